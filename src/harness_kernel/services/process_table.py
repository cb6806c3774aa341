from __future__ import annotations

import os
from collections.abc import Iterable

import psutil


class ProcessTable:
    # Process-table inspection contract used by the supervisor.
    def resolve_actual_process_id(self, signature: str, *, exclude: Iterable[int] = ()) -> int | None:
        raise NotImplementedError("ProcessTable.resolve_actual_process_id must be implemented")

    def is_alive(self, pid: int) -> bool:
        raise NotImplementedError("ProcessTable.is_alive must be implemented")


class PsutilProcessTable(ProcessTable):
    # Scans live processes for a command line containing the expected signature.
    def resolve_actual_process_id(self, signature: str, *, exclude: Iterable[int] = ()) -> int | None:
        skipped = {os.getpid(), *exclude}
        best_pid: int | None = None
        best_created = -1.0
        for proc in psutil.process_iter(["pid", "cmdline", "create_time"]):
            try:
                pid = proc.info.get("pid")
                cmdline = proc.info.get("cmdline")
                if not cmdline or pid in skipped:
                    continue
                if signature not in " ".join(cmdline):
                    continue
                created = proc.info.get("create_time") or 0.0
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            # Newest match wins: a stale worker from an earlier run may still match.
            if created > best_created:
                best_pid = pid
                best_created = created
        return best_pid

    def is_alive(self, pid: int) -> bool:
        try:
            proc = psutil.Process(pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False
