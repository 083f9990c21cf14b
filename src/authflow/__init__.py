"""authflow - ベンダー認可フローとシングルフライトHTTPリクエストのサンプル実装"""

__version__ = "0.1.0"
