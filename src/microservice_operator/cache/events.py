import dataclasses

from ..resources import object_ref


class Event:
    def __init_subclass__(cls, **kwargs):
        """Make subclasses available in the class namespace.
        Allows to use patterns like the following without having
        to import all the event classes.

        ```
        match type(event):
            case event.CreateEvent:
                pass
            case event.UpdateEvent:
                pass
        ```
        """
        super().__init_subclass__(**kwargs)
        setattr(Event, cls.__name__, cls)

    def __repr__(self):
        return f'<{self.__class__.__name__} {object_ref(self.obj)}>'


@dataclasses.dataclass(repr=False)
class CreateEvent(Event):
    obj: dict


@dataclasses.dataclass(repr=False)
class UpdateEvent(Event):
    old: dict
    new: dict

    def __repr__(self):
        return f'<{self.__class__.__name__} {object_ref(self.old)} {object_ref(self.new)}>'


@dataclasses.dataclass(repr=False)
class DeleteEvent(Event):
    obj: dict
