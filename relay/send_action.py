"""
Send action that hands outbound messages to the Messages application.

The result string is the only signal the verifier gets from the send itself;
delivery is confirmed separately by polling the message store.
"""

import logging
import subprocess
import time

logger = logging.getLogger(__name__)

# Recipient and body arrive as argv so no quoting of user text is needed
SEND_SCRIPT = """on run argv
    set targetHandle to item 1 of argv
    set messageBody to item 2 of argv
    tell application "Messages"
        try
            set svc to 1st service whose service type = iMessage
            set bud to buddy targetHandle of svc
            send messageBody to bud
            return "success"
        on error errMsg
            return "error: " & errMsg
        end try
    end tell
end run"""


class AppleScriptSendAction:
    """
    Hands a message to the Messages application through ``osascript``.

    Calling the instance returns ``"success"`` or ``"error: <message>"``;
    it never raises.
    """

    def __init__(self, osascript_binary: str = "osascript", timeout: float = 30.0):
        self.osascript_binary = osascript_binary
        self.timeout = timeout

    def __call__(self, recipient: str, body: str) -> str:
        logger.info(f"Sending message to {recipient} ({len(body)} chars)")
        started = time.perf_counter()
        # Recipient and body reach the script as argv
        try:
            completed = subprocess.run(
                [self.osascript_binary, "-e", SEND_SCRIPT, recipient, body],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"osascript timed out after {self.timeout}s sending to {recipient}")
            return f"error: send timed out after {self.timeout}s"
        except OSError as e:
            logger.error(f"Could not run {self.osascript_binary}: {e}")
            return f"error: {e}"

        # Calculate duration
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        if completed.stderr:
            logger.warning(f"osascript stderr: {completed.stderr.strip()}")

        # osascript itself failed, e.g. Messages is not running
        if completed.returncode != 0:
            message = completed.stderr.strip() or f"osascript exited with {completed.returncode}"
            return f"error: {message}"

        # The script prints "success" or "error: <message>"
        result = completed.stdout.strip()
        logger.info(f"Send result for {recipient}: {result} in {duration_ms}ms")
        return result or "error: empty response from osascript"
