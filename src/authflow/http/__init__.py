"""認証付きHTTPリクエスト"""

from authflow.http.single_flight import InFlightRequest, SingleFlightRequester

__all__ = ["InFlightRequest", "SingleFlightRequester"]
