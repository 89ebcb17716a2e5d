"""Provision a self-hosted SonarQube server and its AWS infrastructure."""

__version__ = "1.0.0"
