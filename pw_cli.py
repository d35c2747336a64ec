# pw_cli.py
from __future__ import annotations

import re
import subprocess
from typing import Optional, Sequence

from pw_errors import ServerOperationFailed

_ID_RE = re.compile(r"\bid:?\s*(\d+)")


def _run(cmd: Sequence[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(list(cmd), capture_output=True, text=True)
    except OSError as e:
        raise ServerOperationFailed(f"{cmd[0]} could not be started: {e}") from e


def _failed(p: subprocess.CompletedProcess[str]) -> bool:
    # pw-cli exits with 0 on most errors and only reports them on stderr
    return p.returncode != 0 or "error" in (p.stderr or "").lower()


def pw_dump_monitor(binary: str = "pw-dump") -> subprocess.Popen:
    try:
        return subprocess.Popen(
            [binary, "--monitor", "--no-colors"],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            errors="replace",
            bufsize=1,
        )
    except OSError as e:
        raise ServerOperationFailed(f"{binary} could not be started: {e}") from e


def pw_create_link(
    output_node: int,
    output_port: int,
    input_node: int,
    input_port: int,
    binary: str = "pw-cli",
) -> Optional[int]:
    props = " ".join(
        [
            f"link.output.node={output_node}",
            f"link.output.port={output_port}",
            f"link.input.node={input_node}",
            f"link.input.port={input_port}",
            "object.linger=true",
        ]
    )
    p = _run([binary, "create-object", "link-factory", f"{{ {props} }}"])
    if _failed(p):
        msg = (p.stderr or p.stdout).strip()
        raise ServerOperationFailed(f"link creation failed ({output_port} -> {input_port}): {msg}")

    m = _ID_RE.search(p.stdout or "")
    return int(m.group(1)) if m else None


def pw_destroy(object_id: int, binary: str = "pw-cli") -> None:
    p = _run([binary, "destroy", str(object_id)])
    if not _failed(p):
        return

    msg = (p.stderr or p.stdout).strip()
    raise ServerOperationFailed(f"destroy of object {object_id} failed: {msg}")
