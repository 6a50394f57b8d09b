import os
import threading
from dataclasses import dataclass, field


METADATA_FILENAME = 'image-metadata.json'
METADATA_BACKUP_FILENAME = 'image-metadata.backup.json'
UPLOADS_FOLDER_NAME = 'uploads'
BACKUPS_FOLDER_NAME = 'backups'

STORAGE_LIMIT = 500 * 1024 * 1024 # Quota reported by /api/storage
MAX_UPLOAD_BYTES = 100 * 1024 * 1024 # Largest accepted upload (videos included)
BACKUP_INTERVAL = 5 # Snapshot after every Nth successful upload


@dataclass
class StorageContext:
    """Everything the storage components need to know about where state lives."""
    root: str
    uploads_dir: str
    backups_dir: str
    metadata_file: str
    metadata_backup_file: str
    storage_limit: int = STORAGE_LIMIT
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    backup_interval: int = BACKUP_INTERVAL
    # Serializes read-modify-write cycles on the metadata file within this process
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @classmethod
    def from_root(cls, root, **overrides):
        """Builds a context with the standard layout under `root`."""
        root = os.path.abspath(root)
        return cls(
            root=root,
            uploads_dir=os.path.join(root, UPLOADS_FOLDER_NAME),
            backups_dir=os.path.join(root, BACKUPS_FOLDER_NAME),
            metadata_file=os.path.join(root, METADATA_FILENAME),
            metadata_backup_file=os.path.join(root, METADATA_BACKUP_FILENAME),
            **overrides,
        )

    def ensure_directories(self):
        os.makedirs(self.uploads_dir, exist_ok=True)
        os.makedirs(self.backups_dir, exist_ok=True)

    def upload_path(self, filename):
        return os.path.join(self.uploads_dir, filename)
