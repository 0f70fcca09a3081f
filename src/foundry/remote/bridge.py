# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/foundry/remote/bridge.py

from __future__ import annotations

import codecs
import contextlib
import logging
import os
import posixpath
import shlex
import socket
import sys
import time
from typing import Callable, IO, Optional, Sequence, Tuple

import paramiko

from .models import ExecResult, RemoteTarget
from ..core.errors import AuthRejected, Unreachable
from ..observers.dispatcher import EventBus
from ..observers.events import RemoteConnected, RemoteExecuted
from ..utils.retry import retry

log = logging.getLogger("foundry")


def _q(s: str) -> str:
    """
    Quote for bash -lc.
    """
    return "'" + s.replace("'", "'\"'\"'") + "'"


class RemoteBridge:
    """
    One SSH connection to one target host.

      - connect():  bounded, timed-out probe; Unreachable is retried,
                    AuthRejected is raised at once
      - transfer(): upload a script body, overwriting any leftover copy
      - execute():  run it with the operator's terminal attached, streaming
      - run():      quiet command for remote-side idempotency checks

    The bridge reports whether the remote process exited cleanly. It does
    not interpret remote progress; the remote script keeps its own
    checkpoint for that.
    """

    def __init__(
        self,
        *,
        connect_timeout: float = 10.0,
        retries: int = 5,
        retry_delay: float = 10.0,
        command_timeout: Optional[float] = None,
        bus: Optional[EventBus] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        stdin: Optional[IO] = None,
        stdout: Optional[IO] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.connect_timeout = connect_timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.command_timeout = command_timeout
        self.bus = bus or EventBus()
        self._client_factory = client_factory
        self._stdin = stdin
        self._stdout = stdout
        self._sleep = sleep
        self.client: Optional[paramiko.SSHClient] = None
        self.target: Optional[RemoteTarget] = None

    # ------------------ connection ------------------

    @property
    def connected(self) -> bool:
        if self.client is None:
            return False
        transport = self.client.get_transport()
        return bool(transport and transport.is_active())

    def _load_pkey(self, target: RemoteTarget) -> Optional[paramiko.PKey]:
        if not target.key_path:
            return None
        key_path = str(target.key_path)
        for key_cls in (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey):
            try:
                return key_cls.from_private_key_file(key_path, password=target.password)
            except paramiko.SSHException:
                continue
        raise AuthRejected(
            f"Unsupported or unreadable private key: {key_path}",
            remediation="ssh-keygen -t ed25519, then add the public key to the host",
        )

    def _connect_once(self, target: RemoteTarget) -> paramiko.SSHClient:
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        pkey = self._load_pkey(target)
        try:
            client.connect(
                hostname=target.host,
                port=target.port,
                username=target.principal,
                pkey=pkey,
                password=target.password if not pkey else None,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                allow_agent=True,
                look_for_keys=pkey is None,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthRejected(
                f"{target.label} rejected the SSH credentials: {exc}",
                command=f"ssh {target.label}",
                remediation=(
                    f"Check your key with: ssh -o BatchMode=yes {target.label} true "
                    "(or add it with ssh-copy-id)"
                ),
            ) from exc
        except (paramiko.SSHException, socket.timeout, OSError) as exc:
            client.close()
            raise Unreachable(
                f"Could not reach {target.label}: {exc}",
                command=f"ssh -o ConnectTimeout={int(self.connect_timeout)} {target.label}",
                remediation=(
                    "Make sure the host is running, the address is correct and "
                    "SSH (port %d) is open" % target.port
                ),
            ) from exc
        return client

    def connect(self, target: RemoteTarget) -> "RemoteBridge":
        """
        Probe until the host answers. A freshly created host usually needs a
        few attempts before sshd is up, so Unreachable is retried with a
        fixed delay; AuthRejected is not.
        """
        self.close()
        attempts = {"n": 0}

        def _on_retry(attempt: int, exc: Exception) -> None:
            log.info("ssh %s not reachable yet (attempt %d/%d): %s",
                     target.label, attempt, self.retries, exc)

        def _attempt() -> paramiko.SSHClient:
            attempts["n"] += 1
            return self._connect_once(target)

        probe = retry(
            retries=self.retries,
            delay=self.retry_delay,
            retry_on=(Unreachable,),
            on_retry=_on_retry,
            sleep=self._sleep,
        )(_attempt)

        self.client = probe()
        self.target = target
        self.bus.emit(RemoteConnected(host=target.host, principal=target.principal, attempts=attempts["n"]))
        log.info("connected to %s after %d attempt(s)", target.label, attempts["n"])
        return self

    def close(self) -> None:
        if self.client is not None:
            try:
                self.client.close()
            finally:
                self.client = None

    def _require(self) -> paramiko.SSHClient:
        if self.client is None:
            raise Unreachable("Not connected to a remote host", remediation="Re-run to reconnect")
        return self.client

    @contextlib.contextmanager
    def _link(self, command: str):
        """
        Turn a dropped connection into Unreachable. The client is closed
        first so `connected` reports False and the next attempt reconnects.
        """
        try:
            yield
        except (paramiko.SSHException, EOFError, socket.timeout, OSError) as exc:
            label = self.target.label if self.target else "remote host"
            log.warning("lost connection to %s during %r: %s", label, command, exc)
            self.close()
            raise Unreachable(
                f"Lost connection to {label}: {exc}",
                command=command,
                remediation="Retry to reconnect; check the host is up and SSH is reachable",
            ) from exc

    # ------------------ quiet commands ------------------

    def run(
        self,
        cmd: str,
        *,
        input: Optional[str] = None,
        timeout: Optional[float] = None,
        log_as: Optional[str] = None,
    ) -> Tuple[int, str, str]:
        """
        Run a shell command and collect its output. Used for checks, never
        for anything the operator needs to watch. `log_as` replaces the
        command in the log when it carries a secret.
        """
        client = self._require()
        final = f"bash -lc {_q(cmd)}"
        log.debug("(%s) $ %s", self.target.host if self.target else "?", log_as or final)
        with self._link(log_as or cmd):
            stdin, stdout, stderr = client.exec_command(final, timeout=timeout or self.command_timeout)
            if input is not None:
                stdin.write(input)
                stdin.flush()
                stdin.channel.shutdown_write()
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            rc = stdout.channel.recv_exit_status()
        log.debug("(%s) [exit %s]", self.target.host if self.target else "?", rc)
        return rc, out, err

    def file_exists(self, remote_path: str) -> bool:
        rc, _, _ = self.run(f"test -f {shlex.quote(remote_path)}")
        return rc == 0

    def sha256(self, remote_path: str) -> Optional[str]:
        rc, out, _ = self.run(f"sha256sum {shlex.quote(remote_path)} 2>/dev/null")
        if rc != 0 or not out.strip():
            return None
        return out.split()[0]

    # ------------------ transfer ------------------

    def transfer(self, script_body: str, remote_path: str, mode: int = 0o755) -> None:
        """
        Write the script next to its final path, then rename over it. A
        leftover file from an interrupted attempt is simply replaced.
        """
        client = self._require()
        tmp_remote = f"{remote_path}.{os.getpid()}.part"
        with self._link(f"sftp put {remote_path}"):
            sftp = client.open_sftp()
            try:
                parent = posixpath.dirname(remote_path)
                if parent:
                    try:
                        sftp.stat(parent)
                    except IOError:
                        sftp.mkdir(parent)
                with sftp.open(tmp_remote, "w") as f:
                    f.write(script_body)
                sftp.chmod(tmp_remote, mode)
                sftp.posix_rename(tmp_remote, remote_path)
            finally:
                sftp.close()
        log.info("uploaded %d bytes to %s:%s", len(script_body), self.target.host if self.target else "?", remote_path)

    # ------------------ streaming execution ------------------

    def execute(
        self,
        remote_path: str,
        args: Sequence[str] = (),
        *,
        interactive: bool = True,
        env: Optional[dict] = None,
    ) -> ExecResult:
        cmd = " ".join(["bash", shlex.quote(remote_path), *[shlex.quote(a) for a in args]])
        return self.stream(cmd, interactive=interactive, env=env)

    def stream(
        self,
        cmd: str,
        *,
        interactive: bool = True,
        env: Optional[dict] = None,
    ) -> ExecResult:
        """
        Run `cmd` on a pseudo-terminal, echo everything it prints as it
        arrives and, when interactive, forward the operator's keystrokes so
        remote prompts can be answered directly.
        """
        client = self._require()

        prefix = ""
        if env:
            prefix = " ".join(f"{k}={_q(str(v))}" for k, v in env.items()) + " "
        final = f"{prefix}{cmd}"

        out = self._stdout or sys.stdout
        stdin = self._stdin or sys.stdin

        # stdout and stderr each keep their own partial multi-byte sequence
        decoders = {
            "out": codecs.getincrementaldecoder("utf-8")(errors="replace"),
            "err": codecs.getincrementaldecoder("utf-8")(errors="replace"),
        }
        chunks: list[str] = []

        def _emit(text: str) -> None:
            if text:
                chunks.append(text)
                out.write(text)
                out.flush()

        def _drain(chan) -> bool:
            got = False
            if chan.recv_ready():
                data = chan.recv(4096)
                if data:
                    _emit(decoders["out"].decode(data))
                    got = True
            if chan.recv_stderr_ready():
                data = chan.recv_stderr(4096)
                if data:
                    _emit(decoders["err"].decode(data))
                    got = True
            return got

        with self._link(cmd):
            transport = client.get_transport()
            if transport is None or not transport.is_active():
                raise paramiko.SSHException("SSH session not active")
            chan = transport.open_session()
            if interactive:
                width, height = _terminal_size()
                chan.get_pty(term=os.environ.get("TERM", "xterm"), width=width, height=height)
            chan.exec_command(final)
            log.info("(%s) $ %s", self.target.host if self.target else "?", cmd)

            with _KeyboardForwarder(stdin, chan, enabled=interactive) as keys:
                while True:
                    if _drain(chan):
                        continue
                    if chan.exit_status_ready():
                        # flush whatever arrived between the last read and exit
                        while _drain(chan):
                            pass
                        break
                    if not keys.pump(0.1):
                        self._sleep(0.1)

            rc = chan.recv_exit_status()
            chan.close()

        for decoder in decoders.values():
            _emit(decoder.decode(b"", final=True))

        self.bus.emit(RemoteExecuted(host=self.target.host if self.target else "", command=cmd, exit_status=rc))
        log.info("(%s) [exit %s] %s", self.target.host if self.target else "?", rc, cmd)
        return ExecResult(command=cmd, exit_status=rc, output="".join(chunks))


def _terminal_size() -> Tuple[int, int]:
    try:
        size = os.get_terminal_size()
        return size.columns, size.lines
    except OSError:
        return 120, 40


class _KeyboardForwarder:
    """
    Puts the local terminal in raw mode (like `ssh -t`) and copies
    keystrokes to the channel. Does nothing when stdin is not a terminal
    or on platforms without termios.
    """

    def __init__(self, stdin: IO, chan, enabled: bool = True):
        self.stdin = stdin
        self.chan = chan
        self.enabled = enabled and _isatty(stdin) and os.name == "posix"
        self._saved = None

    def __enter__(self) -> "_KeyboardForwarder":
        if self.enabled:
            import termios
            import tty

            fd = self.stdin.fileno()
            self._saved = termios.tcgetattr(fd)
            tty.setraw(fd)
            tty.setcbreak(fd)
        return self

    def __exit__(self, *exc) -> None:
        if self._saved is not None:
            import termios

            termios.tcsetattr(self.stdin.fileno(), termios.TCSADRAIN, self._saved)
            self._saved = None

    def pump(self, timeout: float) -> bool:
        """Forward pending keystrokes. Returns False when not forwarding."""
        if not self.enabled:
            return False
        import select

        readable, _, _ = select.select([self.stdin], [], [], timeout)
        if readable:
            data = os.read(self.stdin.fileno(), 1024)
            if data:
                self.chan.send(data)
            else:
                self.chan.shutdown_write()
                self.enabled = False
        return True


def _isatty(stream: IO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, ValueError):
        return False
