"""
File operation utilities
"""

import os
from pathlib import Path
from typing import List, Union

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.gif', '.tiff', '.webp'}


def get_image_files(directory: str, recursive: bool = True) -> List[str]:
    """Get all image files in directory, sorted by path"""
    path = Path(directory)
    candidates = path.rglob('*') if recursive else path.glob('*')

    image_files = {
        str(f) for f in candidates
        if f.is_file() and f.suffix.lower() in IMAGE_EXTENSIONS
    }
    return sorted(image_files)


def file_identity(file_path: Union[str, Path]) -> str:
    """
    Cache key of a file: name, byte size and modification time (ms).

    Raises OSError when the file cannot be stat'ed.
    """
    path = Path(file_path)
    stat = os.stat(path)
    return f"{path.name}_{stat.st_size}_{int(stat.st_mtime * 1000)}"


def format_file_size(size_bytes: int) -> str:
    """Format file size in human readable format"""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.2f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.2f} PB"
