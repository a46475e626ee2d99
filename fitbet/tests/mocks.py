from datetime import datetime, timezone

START = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)
CREATOR_ID = 1
CHAT_ID = -1001


class FakeMessage:
    def __init__(self, content: str):
        self.content = content


class FakeChoice:
    def __init__(self, content: str):
        self.message = FakeMessage(content)


class FakeCompletion:
    def __init__(self, content: str):
        self.choices = [FakeChoice(content)]


class FakeCompletions:
    def __init__(self, content: str = "", error: Exception = None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, *args, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return FakeCompletion(self.content)


class FakeChat:
    def __init__(self, completions: FakeCompletions):
        self.completions = completions


class FakeGroq:
    def __init__(self, content: str = "", error: Exception = None):
        self.chat = FakeChat(FakeCompletions(content, error))


class ExplodingAdvisor:
    """Advisory oracle whose every call fails."""

    def validate_goal(self, params):
        raise RuntimeError("advisor down")

    def get_checkin_advice(self, params):
        raise RuntimeError("advisor down")
