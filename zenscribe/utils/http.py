from fastapi import Request


def prefers_plain_text(request: Request) -> bool:
    """True when the Accept header asks for text/plain before any JSON type"""
    accept = request.headers.get("accept", "").lower()
    if not accept:
        return False
    for media_range in accept.split(","):
        media_type = media_range.split(";")[0].strip()
        if media_type == "text/plain":
            return True
        if "json" in media_type or media_type == "*/*":
            return False
    return False


def request_id_of(request: Request) -> str:
    """Correlation id set by the request logging middleware"""
    return getattr(request.state, "request_id", "-")
