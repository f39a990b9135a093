"""
Media host client. Uploads go to Cloudinary; the rest of the code only sees
`{"url", "public_id"}` dicts.
"""
import logging
from typing import Dict, List, Literal

import cloudinary
import cloudinary.api
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from config import Settings
from errors import UpstreamFailure

logger = logging.getLogger(__name__)

MediaKind = Literal["image", "video"]


class MediaHost:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str = "properties"):
        self.folder = folder
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MediaHost":
        return cls(
            settings.cloudinary_cloud_name,
            settings.cloudinary_api_key,
            settings.cloudinary_api_secret,
            folder=settings.cloudinary_folder,
        )

    def upload(self, data: bytes, kind: MediaKind = "image") -> Dict[str, str]:
        try:
            res = cloudinary.uploader.upload(data, resource_type=kind, folder=self.folder)
        except CloudinaryError as e:
            logger.error("Upload of %s failed: %s", kind, e)
            raise UpstreamFailure(f"Failed to upload {kind}") from e
        return {"url": res["secure_url"], "public_id": res["public_id"]}

    def delete(self, public_id: str, kind: MediaKind = "image") -> None:
        try:
            cloudinary.uploader.destroy(public_id, resource_type=kind)
        except CloudinaryError as e:
            logger.error("Delete of %s %s failed: %s", kind, public_id, e)
            raise UpstreamFailure(f"Failed to delete {kind}") from e

    def delete_many(self, public_ids: List[str], kind: MediaKind = "image") -> None:
        if not public_ids:
            return
        try:
            cloudinary.api.delete_resources(public_ids, resource_type=kind)
        except CloudinaryError as e:
            logger.error("Bulk delete of %d %s files failed: %s", len(public_ids), kind, e)
            raise UpstreamFailure(f"Failed to delete {kind} files") from e
