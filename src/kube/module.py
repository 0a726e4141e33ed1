import os

from injector import Module, provider, singleton
from kubernetes import client, config
from kubernetes.client import ApiClient
from kubernetes.config import ConfigException
from loguru import logger


class KubeModule(Module):
    """Dependency injection module for the Kubernetes client used to install CRDs.

    Environment Variables:
    - KUBECONFIG: kubeconfig path used outside the cluster
    - KUBE_CONTEXT: kubeconfig context to use (optional)
    """

    @provider
    @singleton
    def provide_api_client(self) -> ApiClient:
        try:
            config.load_incluster_config()
            logger.debug("Using in-cluster Kubernetes configuration")
            return client.ApiClient()
        except ConfigException:
            logger.debug("Not running in a cluster, falling back to kubeconfig")

        kubeconfig = os.getenv("KUBECONFIG")
        context = os.getenv("KUBE_CONTEXT") or None
        logger.trace(f"Loading kubeconfig from {kubeconfig} (context: {context})")
        config.load_kube_config(config_file=kubeconfig, context=context)

        return client.ApiClient()
