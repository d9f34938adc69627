"""Shared stubs standing in for the Bus Pirate and the console."""

import pytest

from gba_multiboot.protocol.multiboot import TransportError


class ScriptedTransport:
    """
    Records every sent word and answers from a queue, then a responder.

    fail_after: raise TransportError once this many words have been sent.
    """

    def __init__(self, responder=None, replies=None, fail_after=None):
        self.sent = []
        self.responder = responder or (lambda word: 0)
        self.replies = list(replies or [])
        self.fail_after = fail_after

    def exchange(self, word: int) -> int:
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise TransportError("link cable unplugged")
        self.sent.append(word)
        if self.replies:
            return self.replies.pop(0)
        return self.responder(word)


def gba_responder(length_word: int, hh: int = 0x20, cc: int = 0xCC):
    """Console that answers every handshake on the first try."""

    def respond(word: int) -> int:
        if word == 0x00006202:
            return 0x72026202
        if word == 0x000063D1:
            return 0x730063D1 | (hh << 16)
        if word == length_word:
            return 0x73000000 | (cc << 16)
        if word == 0x00000065:
            return 0x00750065
        return 0

    return respond


@pytest.fixture
def make_transport():
    return ScriptedTransport


@pytest.fixture
def make_gba():
    """Factory: make_gba(length_word, hh=..., cc=...) -> ScriptedTransport."""

    def factory(length_word: int, **kwargs) -> ScriptedTransport:
        return ScriptedTransport(responder=gba_responder(length_word, **kwargs))

    return factory
