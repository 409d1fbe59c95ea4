import unittest

from fakes import NODE_BIN, FakeHost

from vps_deployer.errors import CommandTimeoutError, RemoteCommandError, SSHConnectionError
from vps_deployer.ssh import RemoteExecutor, RemoteProbe, SSHCredentials, SSHSession
from vps_deployer.ssh.session import load_private_key


class FakeChannel:
    def __init__(self, stdout: str = "", stderr: str = "", status: int = 0, hang: bool = False) -> None:
        self._stdout = [stdout.encode("utf-8")] if stdout else []
        self._stderr = [stderr.encode("utf-8")] if stderr else []
        self._status = status
        self._hang = hang

    def recv_ready(self) -> bool:
        return bool(self._stdout)

    def recv(self, size: int) -> bytes:
        return self._stdout.pop(0)

    def recv_stderr_ready(self) -> bool:
        return bool(self._stderr)

    def recv_stderr(self, size: int) -> bytes:
        return self._stderr.pop(0)

    def exit_status_ready(self) -> bool:
        return not self._hang

    def recv_exit_status(self) -> int:
        return self._status


class FakeStream:
    def __init__(self, channel: FakeChannel) -> None:
        self.channel = channel


class FakeSSHClient:
    instances: list = []
    responses: dict = {}

    def __init__(self) -> None:
        self.connected = False
        self.closed = False
        self.commands: list[str] = []
        FakeSSHClient.instances.append(self)

    def set_missing_host_key_policy(self, policy) -> None:  # pragma: no cover - noop
        self.policy = policy

    def connect(self, **kwargs) -> None:
        self.connected = True
        self.kwargs = kwargs

    def exec_command(self, command: str, timeout=None):
        self.commands.append(command)
        channel = FakeSSHClient.responses.get(command) or FakeChannel("ok")
        return (None, FakeStream(channel), FakeStream(channel))

    def close(self) -> None:
        self.closed = True


def _credentials() -> SSHCredentials:
    return SSHCredentials(host="example.com", username="deploy", key_path="~/.ssh/id_ed25519")


class SSHSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        FakeSSHClient.instances = []
        FakeSSHClient.responses = {}

    def test_run_command_uses_client_factory(self) -> None:
        session = SSHSession(_credentials(), client_factory=FakeSSHClient)  # type: ignore[arg-type]
        with session:
            result = session.run("echo test")
        self.assertTrue(result.ok)
        self.assertEqual(result.stdout, "ok")
        client = FakeSSHClient.instances[0]
        self.assertTrue(client.closed)
        self.assertFalse(client.kwargs["look_for_keys"])
        self.assertNotIn("~", client.kwargs["key_filename"])

    def test_collects_stderr_and_exit_status(self) -> None:
        FakeSSHClient.responses["false"] = FakeChannel(stderr="boom", status=2)
        with SSHSession(_credentials(), client_factory=FakeSSHClient) as session:  # type: ignore[arg-type]
            result = session.run("false")
        self.assertFalse(result.ok)
        self.assertEqual(result.exit_status, 2)
        self.assertEqual(result.output, "boom")

    def test_timeout_tears_down_connection(self) -> None:
        FakeSSHClient.responses["sleep 100"] = FakeChannel(hang=True)
        session = SSHSession(_credentials(), client_factory=FakeSSHClient)  # type: ignore[arg-type]
        session.poll_interval = 0.001
        with self.assertRaises(CommandTimeoutError):
            session.run("sleep 100", timeout=0.01)
        self.assertTrue(FakeSSHClient.instances[0].closed)

    def test_invalid_private_key_is_a_connection_error(self) -> None:
        with self.assertRaises(SSHConnectionError):
            load_private_key("not a key")


class RemoteExecutorTests(unittest.TestCase):
    def setUp(self) -> None:
        FakeSSHClient.instances = []
        FakeSSHClient.responses = {}

    def test_each_command_opens_its_own_connection(self) -> None:
        executor = RemoteExecutor(_credentials(), client_factory=FakeSSHClient)  # type: ignore[arg-type]
        executor.execute("echo one")
        executor.execute("echo two")
        self.assertEqual(len(FakeSSHClient.instances), 2)
        self.assertTrue(all(client.closed for client in FakeSSHClient.instances))

    def test_run_checked_raises_with_output(self) -> None:
        FakeSSHClient.responses["make"] = FakeChannel(stderr="missing target", status=1)
        executor = RemoteExecutor(_credentials(), client_factory=FakeSSHClient)  # type: ignore[arg-type]
        with self.assertRaises(RemoteCommandError) as ctx:
            executor.run_checked("make", "Build")
        self.assertEqual(ctx.exception.exit_code, 1)
        self.assertIn("missing target", str(ctx.exception))

    def test_write_file_uses_base64_and_mode(self) -> None:
        host = FakeHost()
        host.write_file("/tmp/secret.txt", "it's \"quoted\" $HOME\n", mode="600")
        self.assertEqual(host.files["/tmp/secret.txt"], "it's \"quoted\" $HOME\n")
        self.assertEqual(host.modes["/tmp/secret.txt"], "600")
        self.assertIn("base64 -d", host.commands[0])
        self.assertNotIn("$HOME", host.commands[0])


class RemoteProbeTests(unittest.TestCase):
    def test_port_and_path_probes(self) -> None:
        host = FakeHost()
        host.bound_ports.add(3001)
        host.dirs.add("/var/www/demo")
        probe = RemoteProbe(host)

        self.assertTrue(probe.port_in_use(3001))
        self.assertFalse(probe.port_in_use(3002))
        self.assertTrue(probe.dir_exists("/var/www/demo"))
        self.assertFalse(probe.path_gone("/var/www/demo"))
        self.assertTrue(probe.path_gone("/var/www/other"))
        self.assertEqual(probe.node_bin_path(), NODE_BIN)
        self.assertTrue(probe.test_connection())


if __name__ == "__main__":
    unittest.main()
