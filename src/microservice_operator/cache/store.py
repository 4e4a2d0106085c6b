from ..exceptions import StoreKeyError


def meta_namespace_key_func(obj):
    """Create a key from the given object for use in a store."""
    try:
        metadata = obj['metadata']
        name = metadata['name']
        namespace = metadata.get('namespace')
    except (KeyError, TypeError) as e:
        raise StoreKeyError(obj) from e
    if namespace is not None:
        return f'{namespace}/{name}'
    return name


class Store:
    """Last seen state of the objects of one kind, keyed by namespace/name."""

    def __init__(self, key_func=None):
        if key_func is None:
            key_func = meta_namespace_key_func
        self.key_func = key_func
        self._items = {}

    def __repr__(self):
        return f'<Store {list(self.keys())}>'

    def __len__(self):
        return len(self._items)

    def __contains__(self, obj):
        return self.key_func(obj) in self._items

    def add(self, obj):
        """Add or replace the given object."""
        self._items[self.key_func(obj)] = obj

    update = add

    def delete(self, obj):
        """Delete the given object, it is fine if it is not in the store."""
        self._items.pop(self.key_func(obj), None)

    def get(self, obj):
        """Get the stored version of the given object.
        Raises KeyError if it is not in the store."""
        return self._items[self.key_func(obj)]

    def keys(self):
        return self._items.keys()

    def list(self):
        return list(self._items.values())

