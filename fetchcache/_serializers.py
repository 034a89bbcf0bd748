import json
import pickle
import typing as tp

from ._exceptions import SerializationError
from ._models import CacheItem

__all__ = ("BaseSerializer", "JSONSerializer", "PickleSerializer", "Metadata")


class Metadata(tp.TypedDict):
    cache_key: str
    created_at: float
    expires_at: tp.Optional[float]


class BaseSerializer:
    def dumps(self, item: CacheItem, metadata: Metadata) -> tp.Union[str, bytes]:
        raise NotImplementedError()

    def loads(self, data: tp.Union[str, bytes]) -> tp.Tuple[CacheItem, Metadata]:
        raise NotImplementedError()

    @property
    def is_binary(self) -> bool:
        raise NotImplementedError()


class PickleSerializer(BaseSerializer):
    """
    A simple pickle-based serializer.

    Stores any picklable body, but must only be used with storages that nobody else can write to.
    """

    def dumps(self, item: CacheItem, metadata: Metadata) -> tp.Union[str, bytes]:
        """
        Dumps the cache item and its metadata.

        :param item: A stored cache entry
        :type item: CacheItem
        :param metadata: Additional information about the stored entry
        :type metadata: Metadata
        :return: Serialized entry
        :rtype: tp.Union[str, bytes]
        """
        return pickle.dumps((item, metadata))

    def loads(self, data: tp.Union[str, bytes]) -> tp.Tuple[CacheItem, Metadata]:
        """
        Loads the cache item and its metadata from serialized data.

        :param data: Serialized data
        :type data: tp.Union[str, bytes]
        :return: The cache item and its metadata
        :rtype: tp.Tuple[CacheItem, Metadata]
        """
        if not isinstance(data, bytes):
            raise SerializationError("The pickle serializer expects bytes.")
        try:
            return tp.cast(tp.Tuple[CacheItem, Metadata], pickle.loads(data))
        except (pickle.UnpicklingError, EOFError) as exc:
            raise SerializationError(f"Could not unpickle the stored entry: {exc}") from exc

    @property
    def is_binary(self) -> bool:
        return True


class JSONSerializer(BaseSerializer):
    """A simple json-based serializer."""

    def dumps(self, item: CacheItem, metadata: Metadata) -> tp.Union[str, bytes]:
        """
        Dumps the cache item and its metadata.

        :param item: A stored cache entry
        :type item: CacheItem
        :param metadata: Additional information about the stored entry
        :type metadata: Metadata
        :return: Serialized entry
        :rtype: tp.Union[str, bytes]
        """
        item_dict = {
            "policy": item.policy,
            "ttl_override": item.ttl_override,
            "body": item.body,
        }

        metadata_dict = {
            "cache_key": metadata["cache_key"],
            "created_at": metadata["created_at"],
            "expires_at": metadata["expires_at"],
        }

        full_json = {
            "item": item_dict,
            "metadata": metadata_dict,
        }

        return json.dumps(full_json, indent=4)

    def loads(self, data: tp.Union[str, bytes]) -> tp.Tuple[CacheItem, Metadata]:
        """
        Loads the cache item and its metadata from serialized data.

        :param data: Serialized data
        :type data: tp.Union[str, bytes]
        :return: The cache item and its metadata
        :rtype: tp.Tuple[CacheItem, Metadata]
        """
        try:
            full_json = json.loads(data)
            item_dict = full_json["item"]
            metadata_dict = full_json["metadata"]

            item = CacheItem(
                policy=item_dict["policy"],
                ttl_override=item_dict["ttl_override"],
                body=item_dict["body"],
            )
            metadata = Metadata(
                cache_key=metadata_dict["cache_key"],
                created_at=metadata_dict["created_at"],
                expires_at=metadata_dict["expires_at"],
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise SerializationError(f"Could not decode the stored entry: {exc!r}") from exc

        return item, metadata

    @property
    def is_binary(self) -> bool:
        return False
