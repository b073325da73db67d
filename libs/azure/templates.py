"""ARM deployment templates, submitted to Azure verbatim."""

from __future__ import annotations

from typing import Any

STORAGE_BLOB_URI = (
    "[concat('http://',parameters('storage_account'),'.blob.core.windows.net/',"
    "parameters('storage_container'),'/', parameters('{file_parameter}'))]"
)

# Linux VM with a public IP, an optional empty data disk and ssh key only login
LINUX: dict[str, Any] = {
    "$schema": "https://schema.management.azure.com/schemas/2015-01-01/deploymentTemplate.json#",
    "contentVersion": "1.0.0.0",
    "parameters": {
        name: {"type": "string"}
        for name in (
            "username",
            "password",
            "image_publisher",
            "image_offer",
            "image_sku",
            "network_security_group",
            "nic",
            "os_file",
            "disk_file",
            "public_ip",
            "ssh_authorized_key",
            "storage_account",
            "storage_container",
            "subnet",
            "virtual_network",
            "vm_size",
            "vm_name",
            "disk_size",
            "additional_disk",
        )
    },
    "variables": {
        "diskAttachment": {
            "true": {
                "disks": [
                    {
                        "name": "datadisk1",
                        "diskSizeGB": "[parameters('disk_size')]",
                        "lun": 0,
                        "vhd": {"uri": STORAGE_BLOB_URI.format(file_parameter="disk_file")},
                        "createOption": "Empty",
                    }
                ]
            },
            "false": {"disks": []},
        },
        "disksSettings": "[variables('diskAttachment')[parameters('additional_disk')]]",
        "disksArray": "[variables('disksSettings').disks]",
        "api_version": "2015-06-15",
        "location": "[resourceGroup().location]",
        "subnet_ref": "[concat(variables('vnet_id'),'/subnets/',parameters('subnet'))]",
        "vnet_id": "[resourceId('Microsoft.Network/virtualNetworks', parameters('virtual_network'))]",
    },
    "resources": [
        {
            "apiVersion": "[variables('api_version')]",
            "type": "Microsoft.Network/publicIPAddresses",
            "name": "[parameters('public_ip')]",
            "location": "[variables('location')]",
            "properties": {
                "publicIPAllocationMethod": "Dynamic",
                "dnsSettings": {"domainNameLabel": "[parameters('public_ip')]"},
            },
        },
        {
            "apiVersion": "[variables('api_version')]",
            "type": "Microsoft.Network/networkInterfaces",
            "name": "[parameters('nic')]",
            "location": "[variables('location')]",
            "dependsOn": ["[concat('Microsoft.Network/publicIPAddresses/', parameters('public_ip'))]"],
            "properties": {
                "ipConfigurations": [
                    {
                        "name": "ipconfig",
                        "properties": {
                            "privateIPAllocationMethod": "Dynamic",
                            "publicIPAddress": {
                                "id": "[resourceId('Microsoft.Network/publicIPAddresses', parameters('public_ip'))]"
                            },
                            "subnet": {"id": "[variables('subnet_ref')]"},
                        },
                    }
                ],
                "networkSecurityGroup": {
                    "id": (
                        "[resourceId('Microsoft.Network/networkSecurityGroups', "
                        "parameters('network_security_group'))]"
                    )
                },
            },
        },
        {
            "apiVersion": "[variables('api_version')]",
            "type": "Microsoft.Compute/virtualMachines",
            "name": "[parameters('vm_name')]",
            "location": "[variables('location')]",
            "dependsOn": ["[concat('Microsoft.Network/networkInterfaces/', parameters('nic'))]"],
            "properties": {
                "hardwareProfile": {"vmSize": "[parameters('vm_size')]"},
                "osProfile": {
                    "computerName": "[parameters('vm_name')]",
                    "adminUsername": "[parameters('username')]",
                    "linuxConfiguration": {
                        "disablePasswordAuthentication": True,
                        "ssh": {
                            "publicKeys": [
                                {
                                    "path": "[concat('/home/', parameters('username'), '/.ssh/authorized_keys')]",
                                    "keyData": "[parameters('ssh_authorized_key')]",
                                }
                            ]
                        },
                    },
                },
                "storageProfile": {
                    "imageReference": {
                        "publisher": "[parameters('image_publisher')]",
                        "offer": "[parameters('image_offer')]",
                        "sku": "[parameters('image_sku')]",
                        "version": "latest",
                    },
                    "dataDisks": "[variables('disksArray')]",
                    "osDisk": {
                        "name": "osdisk",
                        "vhd": {"uri": STORAGE_BLOB_URI.format(file_parameter="os_file")},
                        "caching": "ReadWrite",
                        "createOption": "FromImage",
                    },
                },
                "networkProfile": {
                    "networkInterfaces": [{"id": "[resourceId('Microsoft.Network/networkInterfaces', parameters('nic'))]"}]
                },
                "diagnosticsProfile": {"bootDiagnostics": {"enabled": False}},
            },
        },
    ],
}
