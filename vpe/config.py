import os

from dotenv import load_dotenv


load_dotenv()


def _env_bool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Server settings, read from the environment (and .env) at import time."""
    DATABASE_PATH = os.getenv('VPE_DATABASE_PATH', 'vpe.sqlite')

    ONE_ENDPOINT = os.getenv('VPE_ONE_ENDPOINT', 'http://localhost:2633/RPC2')
    ONE_TIMEOUT = float(os.getenv('VPE_ONE_TIMEOUT', 30))
    ONE_LOCATION = os.getenv('VPE_ONE_LOCATION')

    VAR_PATH = os.getenv('VPE_VAR_PATH', os.path.abspath('var'))
    SHARE_PATH = os.getenv('VPE_SHARE_PATH', os.path.abspath('share'))

    TRANSFER_STORAGE_PATH = os.getenv('VPE_TRANSFER_STORAGE_PATH', os.path.join(VAR_PATH, 'transfer'))
    TRANSFER_CHUNK_SIZE = int(os.getenv('VPE_TRANSFER_CHUNK_SIZE', 16 * 1024 * 1024))
    TRANSFER_SESSION_LIFE_TIME = int(os.getenv('VPE_TRANSFER_SESSION_LIFE_TIME', 24 * 60 * 60))
    TRANSFER_CLEAN_INTERVAL = int(os.getenv('VPE_TRANSFER_CLEAN_INTERVAL', 600))

    USER_LIMIT = int(os.getenv('VPE_USER_LIMIT', 1))

    HOST_IM_DRIVER = os.getenv('VPE_HOST_IM_DRIVER', 'im_kvm')
    HOST_VMM_DRIVER = os.getenv('VPE_HOST_VMM_DRIVER', 'vmm_rvpe')
    HOST_TM_DRIVER = os.getenv('VPE_HOST_TM_DRIVER', 'tm_gfarm')

    LOG_LEVEL = os.getenv('VPE_LOG_LEVEL', 'INFO')
    REDIS_URL = os.getenv('VPE_REDIS_URL')
    HOST = os.getenv('VPE_HOST', '127.0.0.1')
    PORT = int(os.getenv('VPE_PORT', 3111))
    START_SWEEPER = _env_bool('VPE_START_SWEEPER', True)
