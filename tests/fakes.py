import asyncio


class FakeConnection:
    """Stands in for a WebSocket: records every frame pushed to it."""

    def __init__(self):
        self.frames = []

    async def send_json(self, data):
        self.frames.append(data)

    def events(self, name):
        return [f["data"] for f in self.frames if f["event"] == name]


class SlowConnection(FakeConnection):

    async def send_json(self, data):
        await asyncio.sleep(5)


class BrokenConnection(FakeConnection):

    async def send_json(self, data):
        raise ConnectionResetError("peer went away")


class RecordingNotifier:

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def notify_new_message(self, recipient_id, sender_id, sender_display_name):
        self.calls.append((recipient_id, sender_id, sender_display_name))
        if self.fail:
            raise RuntimeError("notification backend down")


class RecordingPush:

    enabled = True

    def __init__(self):
        self.sent = []

    async def send_fcm(self, tokens, title, body, data=None):
        self.sent.append((list(tokens), title, body, data))
        return len(tokens)


class RecordingBus:

    enabled = True

    def __init__(self):
        self.present = set()
        self.cleared = []

    async def set_presence(self, user_id, ttl_seconds=60):
        self.present.add(user_id)

    async def clear_presence(self, user_id):
        self.present.discard(user_id)
        self.cleared.append(user_id)

    async def is_present(self, user_id):
        return user_id in self.present

    async def close(self):
        return None
