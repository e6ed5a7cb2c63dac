"""
Chunked file transfer between clients and the server.

A client opens a session with init(), moves the data with put() (appending
chunks to a file under the transfer storage) or get() (reading chunks from
an existing server file), then closes it with finalize() or cancel().
Stale sessions are reaped by TransferSweeper.
"""

import fcntl
import hashlib
import os
import time

import structlog

from vpe.db.models import Transfer, TransferType
from vpe.db.store import ResourceStore
from vpe.exceptions import NotFoundError, ProtocolError, ValidationError

LOGGER = structlog.get_logger("vpe.transfer")

ALREADY_DONE_MESSAGE = 'Transfer has been already done.'
SIZE_MISMATCH_MESSAGE = 'Transfer failed: File size is not same.'


def generate_token(user_name: str, seed: str) -> str:
    return hashlib.sha1(f"{user_name}{time.time()}{seed}".encode('utf-8')).hexdigest()


def remove_file(path: str) -> bool:
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False


class TransferService:
    def __init__(self, config):
        self.config = config

    @property
    def storage_path(self) -> str:
        # created by the app factory
        return self.config['TRANSFER_STORAGE_PATH']

    @property
    def chunk_size(self) -> int:
        return int(self.config['TRANSFER_CHUNK_SIZE'])

    def _open_session(self, token: str) -> Transfer:
        transfer = ResourceStore.find_by_name(Transfer, token)
        if transfer is None:
            raise NotFoundError(f"Transfer[{token}] is not found.", "TRANSFER_NOT_FOUND")
        return transfer

    def _active_session(self, token: str) -> Transfer:
        transfer = self._open_session(token)
        if transfer.done:
            raise ProtocolError(ALREADY_DONE_MESSAGE, "TRANSFER_DONE")
        return transfer

    def init(self, ctx, transfer_type: str, seed: str, size=0) -> dict:
        """
        Open a session. For `put`, an empty file is created in the transfer
        storage and `size` is what the client promises to send. For `get`,
        `seed` is the server path to read and `size` is taken from it.
        """
        token = generate_token(ctx.name, seed)
        if transfer_type == TransferType.PUT.value:
            path = os.path.join(self.storage_path, token)
            open(path, 'wb').close()
        elif transfer_type == TransferType.GET.value:
            path = str(seed)
            if not os.path.isfile(path):
                raise NotFoundError(f"File[{path}] does not exist.", "FILE_NOT_FOUND")
            size = os.path.getsize(path)
        else:
            raise ValidationError(f"Unknown transfer type: {transfer_type}", "INVALID_TRANSFER_TYPE")

        try:
            transfer = ResourceStore.save(Transfer(name=token, type=transfer_type, path=path, size=size))
        except Exception:
            if transfer_type == TransferType.PUT.value:
                remove_file(path)
            raise
        LOGGER.info("transfer opened", user=ctx.name, token=token, type=transfer_type, size=transfer.size)

        result = transfer.to_dict()
        result['chunk_size'] = self.chunk_size
        return result

    def put(self, token: str, data: bytes) -> int:
        transfer = self._active_session(token)
        if not transfer.is_put:
            raise ProtocolError(f"Transfer[{token}] is not an upload.", "TRANSFER_DIRECTION")

        with open(transfer.path, 'ab') as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            try:
                f.write(data)
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
        return len(data)

    def get(self, token: str, offset: int) -> bytes:
        transfer = self._active_session(token)
        offset = int(offset)
        if offset < 0:
            raise ValidationError(f"Offset must not be negative: {offset}", "INVALID_OFFSET")

        with open(transfer.path, 'rb') as f:
            f.seek(offset)
            return f.read(self.chunk_size)

    def finalize(self, token: str):
        transfer = self._open_session(token)
        if transfer.done:
            return ''

        if transfer.is_put:
            actual = os.path.getsize(transfer.path) if os.path.exists(transfer.path) else -1
            if actual != transfer.size:
                remove_file(transfer.path)
                LOGGER.warning("transfer size mismatch", token=token, declared=transfer.size, actual=actual)
                raise ProtocolError(SIZE_MISMATCH_MESSAGE, "SIZE_MISMATCH")

        transfer.done = True
        ResourceStore.save(transfer)
        return ''

    def cancel(self, token: str):
        transfer = self._open_session(token)
        if transfer.is_put:
            remove_file(transfer.path)
        ResourceStore.delete(transfer)
        return ''

    @staticmethod
    def delete(path: str):
        if remove_file(path):
            LOGGER.info("file deleted", path=path)
        return ''
