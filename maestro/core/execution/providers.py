"""
Repository provider variants.

Maps a persisted repository onto a concrete remote. GitHub is the only
variant; anything else is rejected with UnsupportedProviderError.
"""

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional

from maestro.core.execution.errors import UnsupportedProviderError
from maestro.core.models import Repository, RepositoryProvider


@dataclass(frozen=True)
class GitHubRemote:
    """A repository hosted on github.com, identified as owner/name."""

    owner: str
    name: str

    provider = RepositoryProvider.GITHUB

    @classmethod
    def parse(cls, provider_id: str) -> "GitHubRemote":
        parts = provider_id.split("/")
        if len(parts) != 2 or not all(parts) or any(p in (".", "..") for p in parts):
            raise ValueError(f"Invalid GitHub repository id {provider_id!r}, expected 'owner/repo'")
        return cls(owner=parts[0], name=parts[1])

    @property
    def provider_id(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def relative_path(self) -> PurePosixPath:
        """Location of the clone below the clone root."""
        return PurePosixPath(self.owner, self.name)

    @property
    def display_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.name}"

    def clone_url(self, token: Optional[str] = None) -> str:
        if token:
            return f"https://{token}@github.com/{self.owner}/{self.name}.git"
        return f"https://github.com/{self.owner}/{self.name}.git"


# Room for more providers: add the variant here and to RepositoryProvider
Remote = GitHubRemote


def remote_for(repository: Repository) -> Remote:
    """
    Resolve the remote for a repository record.

    Raises:
        UnsupportedProviderError: For any provider other than GitHub
        ValueError: If the provider id is malformed
    """
    return remote_from(repository.provider, repository.provider_id)


def remote_from(provider: str, provider_id: str) -> Remote:
    provider_value = provider.value if isinstance(provider, RepositoryProvider) else provider
    if provider_value == RepositoryProvider.GITHUB.value:
        return GitHubRemote.parse(provider_id)
    raise UnsupportedProviderError(provider_value)
