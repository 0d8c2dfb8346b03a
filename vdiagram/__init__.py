"""
vCenter inventory reporting and diagram application.

This package provides:
- vCenter inventory collector (pyVmomi)
- Network topology analysis (VLANs, /24 subnets, security zones, gateway VMs)
- Draw.io diagrams of the network topology and the inventory hierarchy
- CSV reports for VM/host utilization, IPs, lifecycle and rightsizing
"""
