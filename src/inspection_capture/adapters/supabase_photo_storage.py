"""Supabase Storage adapter for report photos."""

from dataclasses import dataclass

from supabase import Client

from inspection_capture.services.uploads import PhotoStorage


@dataclass
class SupabasePhotoStorage(PhotoStorage):
    """Stores photos in a Supabase Storage bucket."""

    client: Client
    bucket: str = "photos"

    def put(self, path: str, content: bytes, content_type: str) -> str:
        """Upload bytes, replacing an earlier attempt's object, and return the path."""
        self.client.storage.from_(self.bucket).upload(
            path,
            content,
            {"content-type": content_type, "upsert": "true"},
        )
        return path

    def create_signed_url(self, bucket: str | None, path: str, ttl_seconds: int) -> str:
        """Return a signed URL valid for ttl_seconds."""
        response = self.client.storage.from_(bucket or self.bucket).create_signed_url(
            path, ttl_seconds
        )
        signed = response.get("signedURL") or response.get("signedUrl")
        if not signed:
            raise RuntimeError(f"Failed to sign {path}")
        return signed
