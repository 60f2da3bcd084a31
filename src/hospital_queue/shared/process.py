"""
Bounded external program execution.
"""

import asyncio

from hospital_queue.shared.logging import get_logger

logger = get_logger(__name__)


async def run_process(args: list[str], timeout_seconds: float) -> bool:
    """Run an external program; ``True`` only on exit code 0 within the timeout.

    A program that does not exist counts as a failure. On timeout the
    process is killed and reaped before returning.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as exc:
        logger.debug("Program unavailable", extra={"program": args[0], "error": repr(exc)})
        return False

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning(
            "Program timed out",
            extra={"program": args[0], "timeout_seconds": timeout_seconds},
        )
        return False

    if process.returncode != 0:
        logger.warning(
            "Program failed",
            extra={
                "program": args[0],
                "returncode": process.returncode,
                "stderr": (stderr or b"").decode(errors="replace")[:200],
            },
        )
        return False
    return True
