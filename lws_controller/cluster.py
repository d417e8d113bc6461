"""Kubernetes client management."""

import logging
from typing import Optional

from kubernetes import config
from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api, CustomObjectsApi
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from .config import Settings

logger = logging.getLogger(__name__)


class ClusterConnection:
    """Represents the controller's connection to its Kubernetes cluster."""

    def __init__(self, settings: Settings):
        """
        Initialize cluster connection.

        Args:
            settings: Controller settings

        Raises:
            ValueError: If kubeconfig is invalid
        """
        self.settings = settings
        self._api_client: Optional[ApiClient] = None
        self._core_v1: Optional[CoreV1Api] = None
        self._apps_v1: Optional[AppsV1Api] = None
        self._custom_objects: Optional[CustomObjectsApi] = None

        self._initialize_client()

    def _initialize_client(self):
        """Initialize Kubernetes API client."""
        try:
            if self.settings.kubeconfig_path:
                config.load_kube_config(
                    config_file=self.settings.kubeconfig_path,
                    context=self.settings.kube_context,
                )
                logger.info(f"Loaded kubeconfig from {self.settings.kubeconfig_path}")
            else:
                # Running inside the cluster
                config.load_incluster_config()
                logger.info("Loaded in-cluster configuration")

            self._api_client = ApiClient()
            self._core_v1 = CoreV1Api(self._api_client)
            self._apps_v1 = AppsV1Api(self._api_client)
            self._custom_objects = CustomObjectsApi(self._api_client)

        except Exception as e:
            raise ValueError(f"Failed to initialize cluster connection: {e}") from e

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance."""
        if not self._core_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """Get AppsV1Api instance."""
        if not self._apps_v1:
            raise RuntimeError("Cluster connection not initialized")
        return self._apps_v1

    @property
    def custom_objects(self) -> CustomObjectsApi:
        """Get CustomObjectsApi instance."""
        if not self._custom_objects:
            raise RuntimeError("Cluster connection not initialized")
        return self._custom_objects

    @property
    def api_client(self) -> ApiClient:
        """Get ApiClient instance."""
        if not self._api_client:
            raise RuntimeError("Cluster connection not initialized")
        return self._api_client

    def is_healthy(self) -> bool:
        """
        Check if cluster connection is healthy.

        Returns:
            True if cluster is reachable and healthy
        """
        try:
            self.core_v1.get_api_resources(_request_timeout=self.settings.request_timeout_seconds)
            return True
        except (ApiException, HTTPError):
            return False

    def close(self):
        """Close the cluster connection."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None

        self._core_v1 = None
        self._apps_v1 = None
        self._custom_objects = None

