"""
Storage layer for downloaded resources.
"""

from .downloader import DownloadManager, DownloadRecord, target_path

__all__ = ['DownloadManager', 'DownloadRecord', 'target_path']
