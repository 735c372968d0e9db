"""
OS-level reclamation of rendering processes.

Every browser launched by this package carries a marker switch on its
command line (`--listing-watch-session=<token>`). That switch is the process
identity used to find a session's processes, or any leftover ones, without
touching browsers that belong to something else. The Playwright driver that
spawned a marked browser is its parent and is reclaimed with it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

import psutil

from listing_watch.scraping.logging_utils import log_event

logger = logging.getLogger(__name__)

MARKER_SWITCH = "--listing-watch-session"
DRIVER_COMMAND = "run-driver"
KILL_WAIT_SECONDS = 5.0


def marker_arg(token: str) -> str:
    return f"{MARKER_SWITCH}={token}"


def find_pids_by_marker(token: str | None = None) -> set[int]:
    """
    PIDs whose command line carries our marker, plus all their descendants
    and the Playwright driver that launched them.

    With `token=None` every process started by this package matches.
    """

    needle = marker_arg(token) if token else MARKER_SWITCH
    pids: set[int] = set()
    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            cmdline = proc.info.get("cmdline") or []
            if not any(needle in part for part in cmdline):
                continue
            pids.add(proc.info["pid"])
            for child in proc.children(recursive=True):
                pids.add(child.pid)
            driver_pid = _driver_parent_pid(proc)
            if driver_pid is not None:
                pids.add(driver_pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return pids


def _driver_parent_pid(proc: psutil.Process) -> int | None:
    parent = proc.parent()
    if parent is None:
        return None
    if any(DRIVER_COMMAND in part for part in parent.cmdline()):
        return parent.pid
    return None


def kill_pids(pids: Iterable[int], *, wait_seconds: float = KILL_WAIT_SECONDS) -> int:
    """
    SIGKILL the given processes and wait briefly for them to exit.

    Returns the number of processes signalled.
    """

    victims: list[psutil.Process] = []
    for pid in sorted(set(pids)):
        try:
            proc = psutil.Process(pid)
            proc.kill()
            victims.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

    if victims:
        _, alive = psutil.wait_procs(victims, timeout=wait_seconds)
        if alive:
            log_event(
                logger,
                logging.WARNING,
                "processes_survived_kill",
                pids=[proc.pid for proc in alive],
            )
    return len(victims)


def reap_stray_browsers(*, exclude: Iterable[int] = ()) -> int:
    """
    Kill every marked rendering process except those in `exclude`.
    """

    excluded = set(exclude)
    stray = find_pids_by_marker() - excluded
    if not stray:
        return 0

    killed = kill_pids(stray)
    log_event(
        logger,
        logging.WARNING,
        "stray_browsers_reaped",
        killed=killed,
        pids=sorted(stray),
    )
    return killed
