from abc import ABC, abstractmethod
from .utils import camel_to_snake

class Aggregator(ABC):
    """Builds the data of one metric from the upstream sources."""

    @abstractmethod
    async def compute(self):
        pass

    @abstractmethod
    def default(self):
        """Served until the first successful compute."""
        pass

    @property
    def name(self):
        return camel_to_snake(self.__class__.__name__)
