from .postback import PostbackClient, PostbackResult, PostbackTransport, build_postback_url

__all__ = ["PostbackClient", "PostbackResult", "PostbackTransport", "build_postback_url"]
