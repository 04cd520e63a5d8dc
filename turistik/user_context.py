from abc import ABC, abstractmethod


class UserContextProvider(ABC):
    """Supplies the id of the user a pipeline run acts for."""

    @abstractmethod
    async def get_user_id(self) -> int:
        ...


class StaticUserContext(UserContextProvider):
    def __init__(self, user_id: int):
        self.user_id = user_id

    async def get_user_id(self) -> int:
        return self.user_id
