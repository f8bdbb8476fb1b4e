"""
OS port query for monitored terminals.

Collects TCP ports in LISTEN state owned by a process and all of its
descendants using psutil. The query is blocking; PortMonitor runs it in the
default executor.
"""

import logging
from typing import Protocol, Set

import psutil

from ..errors import ErrorCode, ExternalToolError, ProcessGoneError

logger = logging.getLogger(__name__)


class PortQuery(Protocol):
    """Returns listening TCP ports for a process tree."""

    def listening_ports(self, pid: int) -> Set[int]:
        ...


class PsutilPortQuery:
    """psutil-backed port query.

    Raises ProcessGoneError when the root process no longer exists and
    ExternalToolError when the query cannot be run for the root (e.g. access
    denied).
    Descendants that exit mid-query or deny access are skipped.
    """

    def listening_ports(self, pid: int) -> Set[int]:
        try:
            root = psutil.Process(pid)
            processes = [root, *root.children(recursive=True)]
        except psutil.NoSuchProcess:
            raise ProcessGoneError(pid)
        except psutil.AccessDenied as e:
            raise self._query_failed(pid, f"access denied: {e}")
        except psutil.Error as e:
            raise self._query_failed(pid, str(e))

        ports: Set[int] = set()
        for process in processes:
            try:
                connections = process.net_connections(kind="tcp")
            except psutil.NoSuchProcess:
                if process.pid == pid:
                    raise ProcessGoneError(pid)
                # Child exited between enumeration and query
                continue
            except psutil.AccessDenied as e:
                if process.pid == pid:
                    raise self._query_failed(pid, f"access denied: {e}")
                # Descendant owned by another user (e.g. a sudo'd server)
                logger.debug(f"pid {pid}: skipping descendant {process.pid}, access denied")
                continue
            except (psutil.Error, OSError) as e:
                raise self._query_failed(pid, str(e))

            for conn in connections:
                if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                    continue
                port = conn.laddr.port
                if 1 <= port <= 65535:
                    ports.add(port)

        logger.debug(f"pid {pid}: {len(processes)} process(es), listening ports {sorted(ports)}")
        return ports

    @staticmethod
    def _query_failed(pid: int, reason: str) -> ExternalToolError:
        return ExternalToolError(
            "port query",
            f"pid {pid}: {reason}",
            code=ErrorCode.PORT_QUERY_FAILED
        )
