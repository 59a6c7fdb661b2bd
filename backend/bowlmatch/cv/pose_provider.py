"""
Pose detection capability.

A PoseProvider turns one BGR frame into zero or more Poses. Concrete
providers wrap a model (MoveNet, MediaPipe); PoseProviderChain holds them
in priority order and uses the first one that initializes.

Model libraries are imported only when their provider is built, so the
rest of the pipeline (and its tests) never loads TensorFlow or MediaPipe.
"""

import importlib
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

import numpy as np

from bowlmatch.cv.errors import PoseProviderUnavailableError
from bowlmatch.cv.pose import Pose

logger = logging.getLogger(__name__)


# name -> "module:ClassName"
PROVIDER_REGISTRY: Dict[str, str] = {
    "movenet": "bowlmatch.cv.movenet_estimator:MoveNetPoseProvider",
    "mediapipe": "bowlmatch.cv.pose_estimator:MediaPipePoseProvider",
}


class PoseProvider(ABC):
    """Given an image, return the detected poses (possibly none)."""

    name = "pose"

    async def initialize(self) -> None:
        """Load the model. Raises on failure."""

    @abstractmethod
    async def detect(self, image: np.ndarray) -> List[Pose]:
        """Detect poses in a BGR frame. Primary pose first."""

    def close(self) -> None:
        pass


class PoseProviderChain(PoseProvider):
    """
    Prioritized list of providers behind one PoseProvider interface.

    initialize() tries each provider in order and keeps the first that
    succeeds. If none does, PoseProviderUnavailableError lists every failure.
    When the active provider fails `max_detect_failures` detections in a row,
    the chain moves on to the next provider that initializes.
    """

    name = "chain"

    def __init__(self, providers: Sequence[PoseProvider], max_detect_failures: int = 3):
        if not providers:
            raise ValueError("PoseProviderChain needs at least one provider")
        self.providers = list(providers)
        self.max_detect_failures = max_detect_failures
        self.active: Optional[PoseProvider] = None
        self.failures: List[str] = []
        self._detect_failures = 0

    async def initialize(self) -> None:
        if self.active is not None:
            return

        self.failures = []
        for provider in self.providers:
            try:
                await provider.initialize()
            except Exception as e:
                logger.warning(f"Pose provider '{provider.name}' failed to initialize: {e}")
                self.failures.append(f"{provider.name}: {e}")
                continue
            self.active = provider
            logger.info(f"Using pose provider '{provider.name}'")
            return

        raise PoseProviderUnavailableError(
            f"No pose provider could be initialized ({'; '.join(self.failures)})",
            failures=list(self.failures),
        )

    async def detect(self, image: np.ndarray) -> List[Pose]:
        if self.active is None:
            await self.initialize()
        try:
            poses = await self.active.detect(image)
        except Exception as e:
            self._detect_failures += 1
            if self._detect_failures < self.max_detect_failures or not await self._fall_back(e):
                raise
            return await self.active.detect(image)
        self._detect_failures = 0
        return poses

    async def _fall_back(self, error: Exception) -> bool:
        """Switch to the next provider after the active one that initializes."""
        failing = self.active
        for provider in self.providers[self.providers.index(failing) + 1:]:
            try:
                await provider.initialize()
            except Exception as e:
                logger.warning(f"Pose provider '{provider.name}' failed to initialize: {e}")
                self.failures.append(f"{provider.name}: {e}")
                continue
            logger.warning(
                f"Pose provider '{failing.name}' failed {self._detect_failures} detections in a row "
                f"({error}), switching to '{provider.name}'"
            )
            self.failures.append(f"{failing.name}: {error}")
            self.active = provider
            self._detect_failures = 0
            return True
        return False

    def close(self) -> None:
        for provider in self.providers:
            provider.close()
        self.active = None
        self._detect_failures = 0


class LazyPoseProvider(PoseProvider):
    """
    Defers importing and constructing a registered provider until initialize().

    An import error (model library not installed) is an initialization
    failure like any other, so the chain moves on to the next provider.
    """

    def __init__(self, name: str, settings):
        if name not in PROVIDER_REGISTRY:
            raise ValueError(f"Unknown pose provider '{name}'. Available: {sorted(PROVIDER_REGISTRY)}")
        self.name = name
        self.settings = settings
        self._provider: Optional[PoseProvider] = None

    async def initialize(self) -> None:
        if self._provider is not None:
            return
        module_name, class_name = PROVIDER_REGISTRY[self.name].split(":")
        module = importlib.import_module(module_name)
        provider = getattr(module, class_name).from_settings(self.settings)
        await provider.initialize()
        self._provider = provider

    async def detect(self, image: np.ndarray) -> List[Pose]:
        if self._provider is None:
            await self.initialize()
        return await self._provider.detect(image)

    def close(self) -> None:
        if self._provider is not None:
            self._provider.close()
            self._provider = None


def build_pose_provider(settings) -> PoseProviderChain:
    """Chain of the providers named in settings.pose_providers, in order."""
    return PoseProviderChain([LazyPoseProvider(name, settings) for name in settings.pose_providers])
