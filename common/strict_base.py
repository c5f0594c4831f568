'''
Strict base class that prevents dynamic attribute assignment
'''


class StrictBase:
    '''Base class that only allows annotated attributes

    Prevents accidental typos when setting attributes.
    Subclasses must use type annotations to declare allowed attributes,
    inherited annotations included.
    '''
    _allowed_attrs_: frozenset[str]

    def __init_subclass__(cls):
        allowed = set()
        for klass in cls.__mro__:
            allowed.update(getattr(klass, '__annotations__', {}).keys())

        allowed.discard('_allowed_attrs_')
        cls._allowed_attrs_ = frozenset(allowed)

    def __setattr__(self, name, value):
        if name not in self._allowed_attrs_:
            raise AttributeError(f"Unknown attribute {name!r}")

        return object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        fields = ', '.join(
            f'{name} = {getattr(self, name)!r}'
            for name in sorted(self._allowed_attrs_)
            if hasattr(self, name)
        )
        return f'{type(self).__name__}({fields})'
