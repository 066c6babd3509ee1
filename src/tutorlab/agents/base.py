from abc import ABC, abstractmethod


class Agent(ABC):
    def __init__(self):
        pass

    @abstractmethod
    def _build_messages(self, *args, **kwargs) -> list:
        raise NotImplementedError

    @abstractmethod
    async def run(self, *args, **kwargs):
        raise NotImplementedError
