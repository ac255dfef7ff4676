"""SQLModel database models for Sharebox."""

from sharebox.models.collaborators import Collaborator, CollaboratorBase
from sharebox.models.files import File, FileBase
from sharebox.models.folders import Folder, FolderBase
from sharebox.models.shares import ShareLink, ShareLinkBase

__all__ = [
    "Collaborator",
    "CollaboratorBase",
    "File",
    "FileBase",
    "Folder",
    "FolderBase",
    "ShareLink",
    "ShareLinkBase",
]
