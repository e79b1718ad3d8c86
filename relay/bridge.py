"""
Native decode bridge.

Attributed bodies are object graphs archived by the host's Foundation
framework. The most faithful way to read them is to let Foundation unarchive
them, which this module does out of process: each blob is written to its own
slot file, a Swift script decodes every slot in one run and writes a JSON list
of ``{id, result, success}`` entries, and the results are mapped back to the
input positions.

Spawning the interpreter dominates latency, hence the batch entry point.
All scratch files live in one temporary directory that is removed on every
exit path.
"""

import json
import logging
import os
import shutil
import subprocess
import tempfile
import time
from contextlib import contextmanager
from typing import Iterator, List, Optional, Protocol, Sequence

from relay.metrics import record_bridge_call

logger = logging.getLogger(__name__)

SLOT_PREFIX = "slot_"
SLOT_SUFFIX = ".dat"


class ArchiveDecoder(Protocol):
    """Anything that can turn archived attributed bodies into plain strings."""

    def decode(self, blob: bytes) -> Optional[str]:
        ...

    def decode_batch(self, blobs: Sequence[bytes]) -> List[Optional[str]]:
        """Decode many blobs; the result list is aligned with ``blobs``, None where decoding failed."""
        ...


class NullArchiveDecoder:
    """Decoder used when native decoding is disabled or unavailable on the host."""

    def decode(self, blob: bytes) -> Optional[str]:
        return None

    def decode_batch(self, blobs: Sequence[bytes]) -> List[Optional[str]]:
        return [None] * len(blobs)


@contextmanager
def scratch_dir(prefix: str = "relay-decode-") -> Iterator[str]:
    """
    Temporary working directory that is always removed.

    A removal failure is logged and swallowed: it cannot affect the results
    already read from the directory.
    """
    path = tempfile.mkdtemp(prefix=prefix)
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Failed to remove decode scratch directory {path}: {e}")


SWIFT_UNARCHIVE_SCRIPT = r"""
import Foundation
import ObjectiveC

// NSUnarchiver is deprecated; call it dynamically so the script still compiles cleanly.
func unarchiveSequential(_ data: Data) -> NSAttributedString? {
    guard let cls: AnyObject = NSClassFromString("NSUnarchiver") else { return nil }
    let selector = NSSelectorFromString("unarchiveObjectWithData:")
    guard let meta: AnyClass = object_getClass(cls) else { return nil }
    guard let method = class_getClassMethod(meta, selector) else { return nil }
    typealias UnarchiveFunc = @convention(c) (AnyObject, Selector, AnyObject) -> AnyObject?
    let fn = unsafeBitCast(method_getImplementation(method), to: UnarchiveFunc.self)
    return fn(cls, selector, data as NSData) as? NSAttributedString
}

func unarchive(_ data: Data) -> NSAttributedString? {
    let keyed = data.starts(with: Array("bplist".utf8)) || data.first == 0x80
    if keyed {
        return try? NSKeyedUnarchiver.unarchivedObject(ofClass: NSAttributedString.self, from: data)
    }
    return unarchiveSequential(data)
}

let args = CommandLine.arguments
let inputURL = URL(fileURLWithPath: args[1])
let outputURL = URL(fileURLWithPath: args[2])

let slots = (try? FileManager.default.contentsOfDirectory(at: inputURL, includingPropertiesForKeys: nil)) ?? []
var results: [[String: Any]] = []

for slotURL in slots where slotURL.pathExtension == "dat" {
    let slot = slotURL.deletingPathExtension().lastPathComponent
    if let data = try? Data(contentsOf: slotURL), let decoded = unarchive(data) {
        results.append(["id": slot, "result": decoded.string, "success": true])
    } else {
        results.append(["id": slot, "result": NSNull(), "success": false])
    }
}

let json = try JSONSerialization.data(withJSONObject: results)
try json.write(to: outputURL)
"""


class SwiftArchiveDecoder:
    """
    ArchiveDecoder that runs Foundation's unarchivers through the ``swift``
    interpreter.

    Args:
        swift_binary: Interpreter name or path.
        timeout: Hard limit in seconds for a single-item call.
        batch_timeout: Hard limit in seconds for a batch call.
    """

    def __init__(self, swift_binary: str = "swift", timeout: float = 10.0, batch_timeout: float = 30.0):
        self.swift_binary = swift_binary
        self.timeout = timeout
        self.batch_timeout = batch_timeout

    def available(self) -> bool:
        return shutil.which(self.swift_binary) is not None

    def decode(self, blob: bytes) -> Optional[str]:
        return self._run([blob], self.timeout, "single")[0]

    def decode_batch(self, blobs: Sequence[bytes]) -> List[Optional[str]]:
        return self._run(blobs, self.batch_timeout, "batch")

    def _run(self, blobs: Sequence[bytes], timeout: float, mode: str) -> List[Optional[str]]:
        results: List[Optional[str]] = [None] * len(blobs)
        if not any(blobs):
            return results
        if not self.available():
            logger.debug(f"Native decoder '{self.swift_binary}' not found on PATH")
            return results

        started = time.monotonic()
        try:
            with scratch_dir() as workdir:
                input_dir = os.path.join(workdir, "input")
                os.mkdir(input_dir)

                slots = {}
                for index, blob in enumerate(blobs):
                    if not blob:
                        continue
                    slot = f"{SLOT_PREFIX}{index}"
                    with open(os.path.join(input_dir, slot + SLOT_SUFFIX), "wb") as fh:
                        fh.write(blob)
                    slots[slot] = index

                script_path = os.path.join(workdir, "unarchive.swift")
                with open(script_path, "w", encoding="utf-8") as fh:
                    fh.write(SWIFT_UNARCHIVE_SCRIPT)
                output_path = os.path.join(workdir, "output.json")

                logger.debug(f"Running native decoder on {len(slots)} blob(s), mode={mode}")
                completed = subprocess.run(
                    [self.swift_binary, script_path, input_dir, output_path],
                    capture_output=True,
                    timeout=timeout,
                    check=False,
                )
                if completed.returncode != 0:
                    logger.debug(f"Native decoder exited with {completed.returncode}: "
                                 f"{completed.stderr[:500]!r}")

                # A non-zero exit can still leave usable output behind
                if not os.path.exists(output_path):
                    logger.debug("Native decoder produced no output file")
                    return results

                with open(output_path, "r", encoding="utf-8") as fh:
                    payload = json.load(fh)

                for entry in payload if isinstance(payload, list) else []:
                    if not isinstance(entry, dict):
                        continue
                    index = slots.get(entry.get("id"))
                    text = entry.get("result")
                    if index is not None and entry.get("success") and isinstance(text, str) and text.strip():
                        results[index] = text

                decoded = sum(1 for r in results if r)
                logger.info(f"Native decoder returned {decoded}/{len(slots)} result(s)")
        except subprocess.TimeoutExpired:
            logger.warning(f"Native decoder timed out after {timeout}s ({mode})")
        except (OSError, ValueError) as e:
            logger.warning(f"Native decoder failed: {e}")
        finally:
            record_bridge_call(mode, time.monotonic() - started)

        return results


def build_archive_decoder(enabled: bool, swift_binary: str, timeout: float, batch_timeout: float) -> ArchiveDecoder:
    if not enabled:
        return NullArchiveDecoder()
    return SwiftArchiveDecoder(swift_binary=swift_binary, timeout=timeout, batch_timeout=batch_timeout)
