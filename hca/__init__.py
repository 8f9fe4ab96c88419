"""Homarr Container Adapter (HCA).

Sidecar for a self-hosted Homarr dashboard that:
 - completes Homarr's first-boot onboarding and creates a branded home board
 - discovers running containers labeled ``homarr.*`` and adds them as apps
 - remembers apps the user removed so they are never re-added

Docker is only observed; the adapter never starts or stops containers.
"""
