"""Exceptions raised while talking to trackers."""


class TrackerError(Exception):
    """Base class of all tracker failures."""

    description = "tracker failure"


class InvalidRequest(TrackerError):
    description = "invalid tracker request"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"invalid tracker request: {reason}")


class InvalidResponse(TrackerError):
    description = "invalid tracker response"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"invalid tracker response: {reason}")


class TrackerFailure(TrackerError):
    """The tracker answered with an error message."""

    description = "tracker error response"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"tracker error: {reason}")


class TrackerEOF(TrackerError):
    description = "the tracker closed the connection unexpectedly"

    def __init__(self):
        super().__init__("tracker EOF")


class TrackerIOError(TrackerError):
    description = "the tracker connection experienced an IO error"

    def __init__(self):
        super().__init__("tracker IO error")


class TrackerTimeout(TrackerError):
    description = "the tracker failed to respond to the request in a timely manner"

    def __init__(self):
        super().__init__("tracker timeout")


class DNSTimeout(TrackerError):
    description = "the tracker url dns resolution timed out"

    def __init__(self):
        super().__init__("tracker dns timeout")


class DNSInvalid(TrackerError):
    description = "the tracker url does not correspond to a valid IP address"

    def __init__(self):
        super().__init__("tracker dns invalid")