import socket
import struct
import threading
import time
import unittest
from unittest.mock import MagicMock, patch

from common.errors import BindError, UnknownPeer
from common.peer_connection import PeerConnection
from payload_models import PeerAddress, parse_roster
from server.relay_server import MessageRelay, Server


def wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def fake_connection(address):
    connection = MagicMock(name=f"conn-{address}")
    connection.remote_address = address
    return connection


class TestServerActions(unittest.TestCase):
    """Operações de envio, testadas com conexões falsas no roster."""

    def setUp(self):
        self.server = Server(host="127.0.0.1", port=0)
        self.a = PeerAddress("10.0.0.1", 5000)
        self.b = PeerAddress("10.0.0.2", 6000)
        self.c = PeerAddress("10.0.0.3", 7000)
        self.conns = {addr: fake_connection(addr) for addr in (self.a, self.b, self.c)}
        for addr, conn in self.conns.items():
            self.server.roster.add(addr, conn)

    def test_send_to_all_isolates_failures(self):
        """Um cliente quebrado não impede a entrega para os outros."""
        # 1. Prepara
        self.conns[self.b].send.side_effect = ConnectionResetError("reset")

        # 2. Age
        delivered = self.server.send_to_all("oi")

        # 3. Verifica
        self.assertEqual(sorted(delivered, key=str), [self.a, self.c])
        self.conns[self.a].send.assert_called_once_with("oi")
        self.conns[self.c].send.assert_called_once_with("oi")
        self.conns[self.b].close.assert_called_once()

    def test_send_to_all_with_exclusion(self):
        delivered = self.server.send_to_all("oi", exclude=self.a)

        self.assertNotIn(self.a, delivered)
        self.conns[self.a].send.assert_not_called()
        self.conns[self.b].send.assert_called_once_with("oi")

    def test_send_to_all_rejects_line_breaks(self):
        with self.assertRaises(ValueError):
            self.server.send_to_all("a\nb")
        for conn in self.conns.values():
            conn.send.assert_not_called()

    def test_send_to_unknown_peer_does_no_io(self):
        with self.assertRaises(UnknownPeer) as ctx:
            self.server.send_to(PeerAddress("10.9.9.9", 1), "oi")

        self.assertEqual(ctx.exception.address, PeerAddress("10.9.9.9", 1))
        for conn in self.conns.values():
            conn.send.assert_not_called()

    def test_send_to_accepts_text_address(self):
        self.server.send_to("10.0.0.2:6000", "só pra você")

        self.conns[self.b].send.assert_called_once_with("só pra você")
        self.conns[self.a].send.assert_not_called()

    def test_send_to_failure_closes_and_raises(self):
        self.conns[self.c].send.side_effect = BrokenPipeError("pipe")

        with self.assertRaises(OSError):
            self.server.send_to(self.c, "oi")
        self.conns[self.c].close.assert_called_once()

    def test_broadcast_roster_sends_sorted_snapshot(self):
        self.server.broadcast_roster()

        expected = "CLIENTES:10.0.0.1:5000,10.0.0.2:6000,10.0.0.3:7000"
        for conn in self.conns.values():
            conn.send.assert_called_once_with(expected)

    def test_connection_closed_is_handled_once(self):
        """Fechar duas vezes gera um único evento e um único rebroadcast."""
        # 1. Prepara
        self.server._running = True
        closed = []
        self.server.on("connection_closed", closed.append)

        # 2. Age
        self.server._on_connection_closed(self.conns[self.a])
        self.server._on_connection_closed(self.conns[self.a])

        # 3. Verifica
        self.assertEqual(closed, [self.a])
        self.assertNotIn(self.a, self.server.roster)
        expected = "CLIENTES:10.0.0.2:6000,10.0.0.3:7000"
        self.conns[self.b].send.assert_called_once_with(expected)
        self.conns[self.c].send.assert_called_once_with(expected)
        self.server._running = False

    def test_stale_connection_close_keeps_new_entry(self):
        replacement = fake_connection(self.a)
        self.server.roster.add(self.a, replacement)

        self.server._on_connection_closed(self.conns[self.a])

        self.assertIs(self.server.roster.get(self.a), replacement)

    def test_unknown_event_name_is_rejected(self):
        with self.assertRaises(ValueError):
            self.server.on("nao_existe", lambda *args: None)


def tcp_pair():
    """Par (lado do cliente, lado aceito, endereço aceito) em 127.0.0.1."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    try:
        peer = socket.create_connection(listener.getsockname(), timeout=3.0)
        accepted, addr = listener.accept()
    finally:
        listener.close()
    return peer, accepted, addr


class TestAcceptOrdering(unittest.TestCase):

    def setUp(self):
        self.server = Server(host="127.0.0.1", port=0)
        self.server._running = True
        self.events = []
        self.server.on("new_connection", lambda addr: self.events.append(("new", addr)))
        self.server.on("connection_closed", lambda addr: self.events.append(("closed", addr)))

    def tearDown(self):
        self.server._running = False

    def test_new_connection_comes_before_close_of_short_lived_peer(self):
        """Mesmo se a conexão terminar assim que a leitura começa, new_connection vem primeiro."""
        # 1. Prepara
        peer, accepted, addr = tcp_pair()
        address = PeerAddress.from_sockaddr(addr)

        # 2. Age: a "leitura" já encontra a conexão encerrada
        try:
            with patch.object(PeerConnection, "start_reader", autospec=True,
                              side_effect=lambda connection: connection.close()):
                self.server._handle_connection(accepted, addr)
        finally:
            peer.close()

        # 3. Verifica
        self.assertEqual(self.events, [("new", address), ("closed", address)])
        self.assertNotIn(address, self.server.roster)


class TestStalledPeer(unittest.TestCase):
    """Um cliente que nunca lê não pode segurar o envio para os outros."""

    def setUp(self):
        self.peer, accepted, addr = tcp_pair()
        self.stalled = PeerConnection(
            accepted, remote_address=PeerAddress.from_sockaddr(addr), send_timeout=0.3
        )

    def tearDown(self):
        self.stalled.close()
        self.peer.close()

    def test_send_gives_up_after_timeout(self):
        started = time.time()
        with self.assertRaises(OSError):
            self.stalled.send("x" * 32_000_000)
        self.assertLess(time.time() - started, 10.0)

    def test_send_to_all_skips_stalled_peer(self):
        # 1. Prepara: o travado vem primeiro no roster
        server = Server(host="127.0.0.1", port=0)
        server.roster.add(self.stalled.remote_address, self.stalled)
        healthy = fake_connection(PeerAddress("10.0.0.9", 9000))
        server.roster.add(healthy.remote_address, healthy)
        payload = "x" * 32_000_000

        # 2. Age
        started = time.time()
        delivered = server.send_to_all(payload)

        # 3. Verifica
        self.assertLess(time.time() - started, 10.0)
        self.assertEqual(delivered, [healthy.remote_address])
        healthy.send.assert_called_once_with(payload)
        self.assertFalse(self.stalled.is_open)


class LineClient:
    """Cliente TCP cru para conversar com o servidor nos testes."""

    def __init__(self, address, timeout=3.0):
        self.sock = socket.create_connection((address.ip, address.port), timeout=timeout)
        self.reader = self.sock.makefile("r", encoding="utf-8", newline="\n")
        self.address = PeerAddress.from_sockaddr(self.sock.getsockname())

    def read_line(self):
        return self.reader.readline().rstrip("\r\n")

    def read_until_roster(self, expected):
        """Lê até chegar um roster com exatamente `expected`."""
        while True:
            line = self.read_line()
            if line.startswith("CLIENTES:") and set(parse_roster(line)) == set(expected):
                return line

    def send_line(self, text):
        self.sock.sendall((text + "\n").encode("utf-8"))

    def close(self):
        self.reader.close()
        self.sock.close()


class TestServerIntegration(unittest.TestCase):

    def setUp(self):
        self.server = Server(host="127.0.0.1", port=0)
        self.address = self.server.listen()
        self.clients = []

    def tearDown(self):
        self.server.stop()
        for client in self.clients:
            client.close()

    def _connect(self):
        client = LineClient(self.address)
        self.clients.append(client)
        return client

    def _wait_for_peers(self, count, timeout=3.0):
        deadline = time.time() + timeout
        while time.time() < deadline and len(self.server.peers) != count:
            time.sleep(0.01)
        self.assertEqual(len(self.server.peers), count)

    def test_listen_reports_bound_port(self):
        self.assertTrue(self.server.is_running)
        self.assertNotEqual(self.address.port, 0)

    def test_bind_error_on_busy_port(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        try:
            other = Server(host="127.0.0.1", port=blocker.getsockname()[1])
            with self.assertRaises(BindError):
                other.listen()
            self.assertFalse(other.is_running)
        finally:
            blocker.close()

    def test_roster_is_pushed_to_everyone(self):
        # 1. Prepara / 2. Age
        a = self._connect()
        first = a.read_line()
        b = self._connect()

        # 3. Verifica
        self.assertEqual(first, f"CLIENTES:{a.address}")
        expected = {a.address, b.address}
        a.read_until_roster(expected)
        b.read_until_roster(expected)
        self.assertEqual(set(self.server.peers), expected)

    def test_events_are_emitted(self):
        seen = []
        got_line = threading.Event()
        self.server.on("new_connection", lambda addr: seen.append(("new", addr)))
        self.server.on("data_received", lambda addr, text: (seen.append(("data", addr, text)), got_line.set()))

        a = self._connect()
        a.read_line()
        a.send_line("olá servidor")

        self.assertTrue(got_line.wait(3.0))
        self.assertIn(("new", a.address), seen)
        self.assertIn(("data", a.address, "olá servidor"), seen)

    def test_broadcast_relay_skips_sender(self):
        MessageRelay(self.server).attach()
        a = self._connect()
        b = self._connect()
        a.read_until_roster({a.address, b.address})
        b.read_until_roster({a.address, b.address})

        a.send_line("ALL:oi pessoal")

        self.assertEqual(b.read_line(), "oi pessoal")
        a.sock.settimeout(0.3)
        with self.assertRaises(socket.timeout):
            a.read_line()

    def test_broadcast_relay_may_include_sender(self):
        MessageRelay(self.server, include_sender=True).attach()
        a = self._connect()
        a.read_until_roster({a.address})

        a.send_line("ALL:eco")

        self.assertEqual(a.read_line(), "eco")

    def test_addressed_relay(self):
        MessageRelay(self.server).attach()
        a = self._connect()
        b = self._connect()
        c = self._connect()
        everyone = {a.address, b.address, c.address}
        for client in (a, b, c):
            client.read_until_roster(everyone)

        a.send_line(f"{c.address}:segredo")

        self.assertEqual(c.read_line(), "segredo")
        b.sock.settimeout(0.3)
        with self.assertRaises(socket.timeout):
            b.read_line()

    def test_disconnect_rebroadcasts_roster(self):
        a = self._connect()
        b = self._connect()
        a.read_until_roster({a.address, b.address})

        b.close()
        self.clients.remove(b)

        a.read_until_roster({a.address})
        self._wait_for_peers(1)

    def test_stop_closes_clients(self):
        a = self._connect()
        a.read_line()

        self.server.stop()

        self.assertEqual(a.reader.readline(), "")
        self.assertFalse(self.server.is_running)
        self.assertEqual(self.server.peers, [])

    def test_reset_right_after_connect_keeps_event_order(self):
        """Conexões derrubadas com RST logo após o connect: sempre new antes de closed."""
        # 1. Prepara
        events = []
        lock = threading.Lock()

        def record(kind):
            def callback(addr):
                with lock:
                    events.append((kind, addr))
            return callback

        self.server.on("new_connection", record("new"))
        self.server.on("connection_closed", record("closed"))

        # 2. Age
        for _ in range(100):
            sock = socket.create_connection((self.address.ip, self.address.port), timeout=3.0)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
            sock.close()

        def settled():
            with lock:
                news = sum(1 for kind, _ in events if kind == "new")
                closes = sum(1 for kind, _ in events if kind == "closed")
            return news == closes == 100 and not self.server.peers

        # 3. Verifica: por endereço, os eventos alternam new/closed começando por new
        self.assertTrue(wait_until(settled, timeout=10.0))
        per_address = {}
        with lock:
            for kind, addr in events:
                per_address.setdefault(addr, []).append(kind)
        for addr, kinds in per_address.items():
            with self.subTest(addr=str(addr)):
                self.assertEqual(kinds, ["new", "closed"] * (len(kinds) // 2))


if __name__ == "__main__":
    unittest.main()
