"""Process table lookup for the monitored target."""

import psutil
import structlog

log = structlog.get_logger()

NOT_FOUND = -1


def find_pid(name_substring: str) -> int:
    """Return the PID of the first process whose executable name contains a substring.

    With a shared process namespace the target is not PID 1, so it has to be
    found by name. Processes that exit or deny access mid-scan are skipped.

    Returns:
        The matching PID, or NOT_FOUND if nothing matches
    """
    try:
        for proc in psutil.process_iter(["pid", "name"]):
            try:
                name = proc.info["name"] or ""
                if name_substring in name:
                    return proc.info["pid"]
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
    except psutil.Error as e:
        log.warning("process_scan_failed", error=str(e))
        return NOT_FOUND
    return NOT_FOUND
