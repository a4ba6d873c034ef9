__all__ = ["core", "lock"]

import fusepatch.repository.core as core
import fusepatch.repository.lock as lock
