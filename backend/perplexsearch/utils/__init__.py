"""
Utility modules.
"""

from perplexsearch.utils.attachments import read_files
from perplexsearch.utils.encryption import decrypt_api_key, encrypt_api_key, mask_api_key

__all__ = ["read_files", "decrypt_api_key", "encrypt_api_key", "mask_api_key"]
