"""Profile reads and owner-only updates. Profiles are created by the identity provider."""

from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from classifieds.errors import AuthorizationError, from_pydantic
from classifieds.models.schemas import ProfileOut, ProfileUpdate
from classifieds.repositories import PersistenceGateway
from classifieds.utils import get_logger

logger = get_logger(__name__)


class ProfileService:
    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def get_profile(self, user_id: str) -> ProfileOut:
        return ProfileOut(**self.gateway.get("profiles", user_id))

    def update_profile(
        self,
        user_id: str,
        requester_id: Optional[str],
        patch: Union[ProfileUpdate, Mapping[str, Any]],
    ) -> ProfileOut:
        if not requester_id or requester_id != user_id:
            raise AuthorizationError("Profiles can only be edited by their owner")
        if isinstance(patch, ProfileUpdate):
            data = patch
        else:
            try:
                data = ProfileUpdate.model_validate(patch)
            except PydanticValidationError as e:
                raise from_pydantic(e) from e

        row = self.gateway.update("profiles", user_id, data.model_dump(exclude_unset=True))
        logger.info("Profile %s updated", user_id)
        return ProfileOut(**row)
