import json

import pytest
from pytest_socket import disable_socket


def pytest_runtest_setup():
    """
    Runs before every test.
    Tibber and the MQTT broker are never contacted: every attempt to
    open a network connection raises a SocketBlockedError. Unix sockets
    stay allowed for the asyncio event loop.
    """
    disable_socket(allow_unix_socket=True)


class MockWebSocket:
    """
    Minimal stand-in for a websockets connection.

    Messages are returned in order by recv() and async iteration.
    An exception instance in the list is raised instead of returned.
    """

    def __init__(self, messages):
        self.messages = iter(messages)
        self.sent = []

    async def send(self, msg):
        self.sent.append(json.loads(msg))

    def _next(self):
        message = next(self.messages)
        if isinstance(message, Exception):
            raise message
        return message

    async def recv(self):
        return self._next()

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return self._next()
        except StopIteration:
            raise StopAsyncIteration


@pytest.fixture
def websocket_connections(mocker):
    """
    Patch websockets.connect with a scripted sequence of connection attempts.

    Each attempt is either a list of messages (served by a MockWebSocket)
    or an exception raised by the connect iterator. Attempts are shared
    across calls, so a restarted connect loop continues with the next one.
    Returns the MockWebSocket objects for inspection.
    """
    def install(*attempts):
        scripted = [
            attempt if isinstance(attempt, Exception) else MockWebSocket(attempt)
            for attempt in attempts
        ]
        pending = iter(scripted)

        async def mock_connect(*args, **kwargs):
            for attempt in pending:
                if isinstance(attempt, Exception):
                    raise attempt
                yield attempt

        mocker.patch('sources.tibber.websockets.connect', side_effect=mock_connect)
        return [attempt for attempt in scripted if isinstance(attempt, MockWebSocket)]

    return install
