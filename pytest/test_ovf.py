# Copyright (c) 2024 Broadcom.  All Rights Reserved.
#
# Licensed under the Apache License, Version 2.0 (the “License”); you may not
# use this file except in compliance with the License.  You may obtain a copy of
# the License at:
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software distributed
# under the License is distributed on an “AS IS” BASIS, without warranties or
# conditions of any kind, EITHER EXPRESS OR IMPLIED.  See the License for the
# specific language governing permissions and limitations under the License.

import os
import pytest

from conftest import CONFIG_DIR, hw_items, load_config, load_metadata, parse_ovf
from ec2ovf.ec2 import BlockDeviceMapping, Image, Instance, InstanceTypeInfo, NetworkInterface, Tag
from ec2ovf.errors import BuildError
from ec2ovf.ovf import (
    GIB, NS_CIM, NS_OVF, NS_RASD, NS_VMW, NS_VSSD, NS_XSI,
    OVF, OVFDisk, OVFFile, format_ovf, guest_os_type
)


TASK_ID = "export-ami-1545f5ce7236bf35t"


def make_instance(core_count=2, interfaces=(), tags=()):
    return Instance("i-0123", core_count,
                    network_interfaces=[NetworkInterface(s) for s in interfaces],
                    tags=[Tag(k, v) for k, v in tags])


def make_image(mappings=(), platform=None, description=""):
    return Image(platform_details=platform, description=description,
                 block_device_mappings=list(mappings))


def build(instance=None, memory=1024, image=None):
    return OVF.from_ec2(TASK_ID,
                        instance or make_instance(),
                        InstanceTypeInfo(memory),
                        image or make_image())


def test_basic_scenario():
    task_id, instance, instance_type, image = load_metadata(load_config(os.path.join(CONFIG_DIR, "basic.yaml")))
    data = format_ovf(task_id, instance, instance_type, image)
    ovf = parse_ovf(data)
    envelope = ovf['Envelope']

    items = hw_items(ovf)
    assert [item['rasd:ResourceType'] for item in items] == ["3", "4", "5", "17", "10"]
    assert items[0]['rasd:VirtualQuantity'] == "2"
    assert items[0]['rasd:ElementName'] == "2 virtual CPU(s)"
    assert items[1]['rasd:VirtualQuantity'] == "4096"
    assert items[1]['rasd:AllocationUnits'] == "byte * 2^20"

    files = envelope['References']['File']
    assert len(files) == 1
    assert files[0]['@ovf:href'] == f"{task_id}-dev-sda1.raw"

    disks = envelope['DiskSection']['Disk']
    assert len(disks) == 1
    assert disks[0]['@ovf:capacity'] == str(8 * 1024**3)
    assert disks[0]['@ovf:fileRef'] == files[0]['@ovf:id']

    networks = envelope['NetworkSection']['Network']
    assert [nw['@ovf:name'] for nw in networks] == ["subnet-abc"]

    os_section = envelope['VirtualSystem']['OperatingSystemSection']
    assert os_section['@vmw:osType'] == "otherLinux64Guest"
    assert os_section['@ovf:id'] == "94"
    assert os_section['Description'] == "Amazon Linux 2023 AMI"


def test_xml_declaration():
    data = build().to_string()
    assert data.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<Envelope ')


def test_namespaces():
    envelope = parse_ovf(build().to_string())['Envelope']
    assert envelope['@xmlns'] == NS_OVF
    assert envelope['@xmlns:ovf'] == NS_OVF
    assert envelope['@xmlns:cim'] == NS_CIM
    assert envelope['@xmlns:rasd'] == NS_RASD
    assert envelope['@xmlns:vmw'] == NS_VMW
    assert envelope['@xmlns:vssd'] == NS_VSSD
    assert envelope['@xmlns:xsi'] == NS_XSI


def test_section_order():
    tree = build().to_xml()
    root = tree.getroot()
    assert [child.tag for child in root] == [
        '{%s}References' % NS_OVF,
        '{%s}DiskSection' % NS_OVF,
        '{%s}NetworkSection' % NS_OVF,
        '{%s}VirtualSystem' % NS_OVF,
    ]


def test_rasd_elements_sorted():
    tree = build(instance=make_instance(interfaces=["subnet-1"])).to_xml()
    for item in tree.getroot().iter('{%s}Item' % NS_OVF):
        tags = [child.tag for child in item]
        assert tags == sorted(tags)


@pytest.mark.parametrize("size", [1, 20, 16384])
def test_capacity(size):
    ovf = build(image=make_image([BlockDeviceMapping("/dev/xvda", size)]))
    assert ovf.disks[0].capacity == size * 1024 * 1024 * 1024
    assert ovf.files[0].size == size * GIB


def test_skipped_mappings():
    mappings = [
        BlockDeviceMapping("/dev/sdb"),
        BlockDeviceMapping("/dev/sda1", 10),
        BlockDeviceMapping("/dev/sdc"),
        BlockDeviceMapping("/dev/sdd", 20),
    ]
    ovf = build(image=make_image(mappings))

    assert ovf.skipped_devices == ("/dev/sdb", "/dev/sdc")
    assert [f.id for f in ovf.files] == ["file1", "file2"]
    assert [d.id for d in ovf.disks] == ["vmdisk1", "vmdisk2"]
    assert [f.href for f in ovf.files] == [f"{TASK_ID}-dev-sda1.raw", f"{TASK_ID}-dev-sdd.raw"]

    disk_items = [item for item in ovf.rasd_items if item.resource_type == 17]
    assert [item.instance_id for item in disk_items] == [4, 5]
    assert [item.address_on_parent for item in disk_items] == [0, 1]
    assert all(item.rasd_parent.instance_id == 3 for item in disk_items)


def test_instance_ids_emission_order():
    instance = make_instance(interfaces=["subnet-1", None])
    image = make_image([BlockDeviceMapping("/dev/sda1", 8), BlockDeviceMapping("/dev/sdb", 8)])
    ovf = build(instance=instance, image=image)

    assert [(item.instance_id, item.resource_type) for item in ovf.rasd_items] == [
        (1, 3), (2, 4), (3, 5), (4, 17), (5, 17), (6, 10), (7, 10)
    ]


def test_network_fallback_names():
    ovf = build(instance=make_instance(interfaces=[None, "subnet-x", None]))
    assert [nw.name for nw in ovf.networks] == ["VM Network 1", "subnet-x", "VM Network 3"]
    assert [nw.description for nw in ovf.networks] == [
        "Network interface 1", "Network interface 2", "Network interface 3"
    ]


def test_shared_subnet():
    ovf = build(instance=make_instance(interfaces=["subnet-a", "subnet-a"]))
    assert [nw.name for nw in ovf.networks] == ["subnet-a"]

    adapters = [item for item in ovf.rasd_items if item.resource_type == 10]
    assert len(adapters) == 2
    assert [item.element_name for item in adapters] == ["Ethernet 1", "Ethernet 2"]
    assert all(item.network.name == "subnet-a" for item in adapters)
    ovf.check()


def test_adapter_description():
    items = hw_items(parse_ovf(build(instance=make_instance(interfaces=["subnet-abc"])).to_string()))
    assert items[-1]['rasd:Description'] == 'E1000 ethernet adapter on "subnet-abc"'
    assert items[-1]['rasd:ElementName'] == "Ethernet 1"


@pytest.mark.parametrize("platform, os_type", [
    ("Windows", "windows9_64Guest"),
    ("Red Hat Enterprise Linux", "rhel8_64Guest"),
    ("Linux/UNIX", "otherLinux64Guest"),
    ("Red Hat Enterprise Linux with SQL Server Standard", "otherLinux64Guest"),
    ("", "otherLinux64Guest"),
    (None, "otherLinux64Guest"),
])
def test_guest_os(platform, os_type):
    assert guest_os_type(platform) == os_type
    assert build(image=make_image(platform=platform)).operating_system.os_type == os_type


@pytest.mark.parametrize("tags, name", [
    ([("Name", "web-1")], "web-1"),
    ([("env", "prod"), ("Name", "web-1"), ("Name", "web-2")], "web-1"),
    ([("name", "lowercase")], "i-0123"),
    ([], "i-0123"),
])
def test_display_name(tags, name):
    ovf = build(instance=make_instance(tags=tags))
    assert ovf.name == name
    assert parse_ovf(ovf.to_string())['Envelope']['VirtualSystem']['Name'] == name


def test_deterministic():
    image = make_image([BlockDeviceMapping("/dev/sda1", 8)], platform="Windows")
    instance = make_instance(interfaces=["subnet-1", None], tags=[("Name", "x")])
    assert build(instance=instance, image=image).to_string() == build(instance=instance, image=image).to_string()


def test_check_orphan_file():
    ovf = build(image=make_image([BlockDeviceMapping("/dev/sda1", 8)]))
    ovf.files = ovf.files + (OVFFile("file9", "orphan.raw", 1),)
    with pytest.raises(BuildError):
        ovf.to_string()


def test_check_unreferenced_disk():
    ovf = build(image=make_image([BlockDeviceMapping("/dev/sda1", 8)]))
    ovf.disks = (OVFDisk("vmdisk1", OVFFile("file7", "other.raw", 1), 1),)
    with pytest.raises(BuildError):
        ovf.check()


def test_check_instance_ids():
    ovf = build()
    ovf.rasd_items = ovf.rasd_items[1:]
    with pytest.raises(BuildError):
        ovf.check()


def test_check_duplicate_href():
    ovf = build(image=make_image([BlockDeviceMapping("/dev/sda1", 8), BlockDeviceMapping("sda1", 8)]))
    with pytest.raises(BuildError):
        ovf.to_string()


def test_serialization_error():
    ovf = build(image=make_image(description="bad \x01 character"))
    with pytest.raises(BuildError):
        ovf.to_string()


def test_write_xml(tmp_path):
    ovf = build()
    out_ovf = tmp_path / "vm.ovf"
    ovf.write_xml(str(out_ovf))
    assert out_ovf.read_text(encoding="UTF-8") == ovf.to_string()


def test_system_type():
    ovf = OVF.from_ec2(TASK_ID, make_instance(), InstanceTypeInfo(512), make_image(), system_type="vmx-19")
    system = parse_ovf(ovf.to_string())['Envelope']['VirtualSystem']['VirtualHardwareSection']['System']
    assert system['vssd:VirtualSystemType'] == "vmx-19"
