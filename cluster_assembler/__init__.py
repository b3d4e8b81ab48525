"""Kubeadm cluster assembly over SSH."""

__version__ = "0.1.0"
