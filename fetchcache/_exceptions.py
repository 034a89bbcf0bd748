__all__ = ("FetchCacheError", "InvalidPolicyError", "SerializationError")


class FetchCacheError(Exception): ...


class InvalidPolicyError(FetchCacheError): ...


class SerializationError(FetchCacheError): ...
