import logging

from cryptography.fernet import Fernet, InvalidToken

#-----------------------------------------------------------------------------

class AbstractEncrypter:
    def decrypt(self, s: str) -> str: ...
    def encrypt(self, s: str) -> str: ...
    def is_encrypted(self, s: str) -> bool: ...

#-----------------------------------------------------------------------------

class FernetEncrypter(AbstractEncrypter):
    """
    Fernet encryption for configuration secrets and log fields

    An invalid key disables the encrypter: encrypt() and decrypt() then
    return "" so a secret is never written out in clear text by accident.
    """

    def __init__(self, key: str):
        self._key = key.strip()

        try:
            self._fernet = Fernet(self._key) if self._key else None
        except ValueError as e:
            logging.error(f"Invalid Fernet key: {str(e)}")
            self._fernet = None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    #-----------------------------------------------------

    def decrypt(self, s: str) -> str:
        if not s or not self._fernet:
            return ""

        if not self.is_encrypted(s):
            return s

        try:
            return self._fernet.decrypt(s.encode()).decode()

        except InvalidToken:
            logging.error("Failed to decrypt a configuration value, wrong key?")
            return s

    def encrypt(self, s: str) -> str:
        if not s or not self._fernet:
            return ""

        return self._fernet.encrypt(s.encode()).decode()

    def is_encrypted(self, s: str) -> bool:
        return s.startswith("gAAAA")

#-----------------------------------------------------------------------------
