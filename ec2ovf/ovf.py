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

from collections import namedtuple

from lxml import etree as ET

from ec2ovf.errors import BuildError


NS_CIM = "http://schemas.dmtf.org/wbem/wscim/1/common"
NS_OVF = "http://schemas.dmtf.org/ovf/envelope/1"
NS_RASD = "http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/CIM_ResourceAllocationSettingData"
NS_VMW = "http://www.vmware.com/schema/ovf"
NS_VSSD = "http://schemas.dmtf.org/wbem/wscim/1/cim-schema/2/CIM_VirtualSystemSettingData"
NS_XSI = "http://www.w3.org/2001/XMLSchema-instance"

NS_MAP = {
    None: NS_OVF,
    "cim" : NS_CIM,
    "ovf" : NS_OVF,
    "rasd" : NS_RASD,
    "vmw" : NS_VMW,
    "vssd" : NS_VSSD,
    "xsi" : NS_XSI
}

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

DEFAULT_SYSTEM_TYPE = "vmx-07"
DISK_FORMAT = "http://www.vmware.com/interfaces/specifications/vmdk.html#streamOptimized"
GIB = 1024 * 1024 * 1024

# CIM_OperatingSystem id written to every OperatingSystemSection
OS_CIM_ID = 94

DEFAULT_GUEST_OS = "otherLinux64Guest"
GUEST_OS_TYPES = {
    "Windows": "windows9_64Guest",
    "Red Hat Enterprise Linux": "rhel8_64Guest",
}


def guest_os_type(platform_details):
    return GUEST_OS_TYPES.get(platform_details, DEFAULT_GUEST_OS)


def xml_text_element(tag, value):
    elem = ET.Element(tag)
    elem.text = value
    return elem


def ovf_text_element(tag, value):
    return xml_text_element('{%s}%s' % (NS_OVF, tag), value)


class VssdSystem(object):

    def __init__(self, identifier, type=DEFAULT_SYSTEM_TYPE):
        self.identifier = identifier
        self.type = type


    def xml_element(self, tag, value):
        return xml_text_element("{%s}%s" % (NS_VSSD, tag), str(value))


    def xml_item(self, element_name):
        item = ET.Element('{%s}System' % NS_OVF)

        item.append(self.xml_element('ElementName', element_name))
        item.append(self.xml_element('InstanceID', 0))
        item.append(self.xml_element('VirtualSystemIdentifier', self.identifier))
        item.append(self.xml_element('VirtualSystemType', self.type))

        return item


class RasdItem(object):
    resource_type = None
    description = "Virtual Hardware Item"

    def __init__(self, instance_id, element_name):
        self.instance_id = instance_id
        self.element_name = element_name


    def xml_element(self, tag, value):
        return xml_text_element("{%s}%s" % (NS_RASD, tag), str(value))


    def xml_item(self):
        item = ET.Element('{%s}Item' % NS_OVF)

        item.append(self.xml_element('ResourceType', self.resource_type))
        item.append(self.xml_element('InstanceID', self.instance_id))
        item.append(self.xml_element('Description', self.description))
        item.append(self.xml_element('ElementName', self.element_name))

        return item


class RasdCpus(RasdItem):
    resource_type = 3
    description = "Number of Virtual CPUs"


    def __init__(self, instance_id, num):
        super().__init__(instance_id, f"{num} virtual CPU(s)")
        self.num = int(num)


    def xml_item(self):
        item = super().xml_item()
        item.append(self.xml_element('AllocationUnits', 'hertz * 10^6'))
        item.append(self.xml_element('VirtualQuantity', self.num))

        return item


class RasdMemory(RasdItem):
    resource_type = 4
    description = "Memory Size"


    def __init__(self, instance_id, size):
        super().__init__(instance_id, f"{size}MB of memory")
        self.size = int(size)


    def xml_item(self):
        item = super().xml_item()
        item.append(self.xml_element('AllocationUnits', 'byte * 2^20'))
        item.append(self.xml_element('VirtualQuantity', self.size))

        return item


class RasdIdeController(RasdItem):
    resource_type = 5
    description = "IDE Controller"


    def __init__(self, instance_id, address=0):
        super().__init__(instance_id, f"VirtualIDEController {address}")
        self.address = address


    def xml_item(self):
        item = super().xml_item()
        item.append(self.xml_element('Address', self.address))

        return item


class RasdControllerItem(RasdItem):

    def __init__(self, instance_id, element_name, parent, address_on_parent):
        super().__init__(instance_id, element_name)
        self.rasd_parent = parent
        self.address_on_parent = address_on_parent


    def xml_item(self):
        item = super().xml_item()
        item.append(self.xml_element('Parent', self.rasd_parent.instance_id))
        item.append(self.xml_element('AddressOnParent', self.address_on_parent))

        return item


class RasdHardDisk(RasdControllerItem):
    resource_type = 17
    description = "Hard Disk"


    def __init__(self, instance_id, parent, disk, address_on_parent):
        super().__init__(instance_id, f"Hard Disk {address_on_parent + 1}", parent, address_on_parent)
        self.disk = disk


    def xml_item(self):
        item = super().xml_item()
        item.append(self.xml_element('HostResource', self.disk.host_resource()))

        return item


class RasdEthernet(RasdItem):
    resource_type = 10
    subtype = "E1000"


    def __init__(self, instance_id, index, network, connected=True):
        super().__init__(instance_id, f"Ethernet {index}")
        self.network = network
        self.connected = connected
        self.description = f"{self.subtype} ethernet adapter on \"{network.name}\""


    def xml_item(self):
        item = super().xml_item()
        item.append(self.xml_element('ResourceSubType', self.subtype))
        item.append(self.xml_element('Connection', self.network.name))
        item.append(self.xml_element('AutomaticAllocation', "true" if self.connected else "false"))

        return item


class OVFNetwork(object):

    def __init__(self, name, description):
        self.name = name
        self.description = description


    def xml_item(self):
        item = ET.Element('{%s}Network' % NS_OVF, {'{%s}name' % NS_OVF : self.name})
        item.append(ovf_text_element('Description', self.description))

        return item


class OVFFile(object):

    def __init__(self, id, href, size):
        self.id = id
        self.href = href
        self.size = size


    def host_resource(self):
        return f"ovf:/file/{self.id}"


    def xml_item(self):
        return ET.Element('{%s}File' % NS_OVF, {
            '{%s}href' % NS_OVF: self.href,
            '{%s}id' % NS_OVF: self.id,
            '{%s}size' % NS_OVF: str(self.size)
        })


class OVFDisk(object):

    def __init__(self, id, file, capacity):
        self.id = id
        self.file = file
        self.capacity = capacity


    def host_resource(self):
        return f"ovf:/disk/{self.id}"


    def xml_item(self):
        return ET.Element('{%s}Disk' % NS_OVF, {
            '{%s}capacity' % NS_OVF: str(self.capacity),
            '{%s}capacityAllocationUnits' % NS_OVF: 'byte',
            '{%s}diskId' % NS_OVF: self.id,
            '{%s}fileRef' % NS_OVF: self.file.id,
            '{%s}format' % NS_OVF: DISK_FORMAT
        })


class OVFOperatingSystem(object):

    def __init__(self, os_type, description="", cim_id=OS_CIM_ID):
        self.os_type = os_type
        self.description = description
        self.cim_id = cim_id


    @classmethod
    def from_platform(cls, platform_details, description=""):
        return cls(guest_os_type(platform_details), description)


    def xml_item(self):
        oss = ET.Element('{%s}OperatingSystemSection' % NS_OVF, {
            '{%s}id' % NS_OVF: str(self.cim_id),
            '{%s}osType' % NS_VMW: self.os_type
        })
        oss.append(ovf_text_element('Info', "The kind of installed guest operating system"))
        oss.append(ovf_text_element('Description', self.description))

        return oss


class HardwareAccumulator(namedtuple('HardwareAccumulator',
                                     ['next_id', 'files', 'disks', 'networks', 'rasd_items', 'skipped_devices'])):
    """
    Running state of a single OVF build. Every step returns a new accumulator,
    instance ids are handed out from next_id in emission order.
    """
    __slots__ = ()

    @classmethod
    def empty(cls):
        return cls(1, (), (), (), (), ())


    def add_item(self, item):
        assert item.instance_id == self.next_id
        return self._replace(next_id=self.next_id + 1, rasd_items=self.rasd_items + (item,))


def add_cpus(acc, instance):
    return acc.add_item(RasdCpus(acc.next_id, instance.core_count))


def add_memory(acc, instance_type):
    return acc.add_item(RasdMemory(acc.next_id, instance_type.memory_mib))


def add_disks(acc, controller, export_task_id, image):
    for bdm in image.block_device_mappings:
        if not bdm.is_ebs():
            acc = acc._replace(skipped_devices=acc.skipped_devices + (bdm.device_name,))
            continue

        position = len(acc.disks)
        capacity = bdm.volume_size_gib * GIB
        file = OVFFile(f"file{position + 1}",
                       f"{export_task_id}-dev-{bdm.device_basename()}.raw",
                       capacity)
        disk = OVFDisk(f"vmdisk{position + 1}", file, capacity)

        acc = acc._replace(files=acc.files + (file,), disks=acc.disks + (disk,))
        acc = acc.add_item(RasdHardDisk(acc.next_id, controller, disk, position))
    return acc


def add_networks(acc, instance):
    networks = {nw.name: nw for nw in acc.networks}
    for i, interface in enumerate(instance.network_interfaces, start=1):
        name = interface.subnet_id or f"VM Network {i}"

        # interfaces sharing a subnet share one network entry
        network = networks.get(name)
        if network is None:
            network = OVFNetwork(name, f"Network interface {i}")
            networks[name] = network
            acc = acc._replace(networks=acc.networks + (network,))

        acc = acc.add_item(RasdEthernet(acc.next_id, i, network))
    return acc


class OVF(object):

    def __init__(self, system_id, name, operating_system, vssd_system,
                 files, disks, networks, rasd_items, skipped_devices=()):
        self.system_id = system_id
        self.name = name
        self.operating_system = operating_system
        self.vssd_system = vssd_system
        self.files = tuple(files)
        self.disks = tuple(disks)
        self.networks = tuple(networks)
        self.rasd_items = tuple(rasd_items)
        self.skipped_devices = tuple(skipped_devices)


    @classmethod
    def from_ec2(cls, export_task_id, instance, instance_type, image,
                 system_type=DEFAULT_SYSTEM_TYPE):
        system_id = f"export-{instance.instance_id}"

        acc = HardwareAccumulator.empty()
        acc = add_cpus(acc, instance)
        acc = add_memory(acc, instance_type)
        controller = RasdIdeController(acc.next_id)
        acc = acc.add_item(controller)
        acc = add_disks(acc, controller, export_task_id, image)
        acc = add_networks(acc, instance)

        return cls(system_id,
                   instance.name(),
                   OVFOperatingSystem.from_platform(image.platform_details, image.description),
                   VssdSystem(system_id, system_type),
                   acc.files, acc.disks, acc.networks, acc.rasd_items,
                   acc.skipped_devices)


    def check(self):
        """
        Verify the cross references between the sections. Raises BuildError
        on the first inconsistency found.
        """
        file_ids = [f.id for f in self.files]
        if len(set(file_ids)) != len(file_ids):
            raise BuildError(f"{self.system_id}: duplicate file ids {file_ids}")
        hrefs = [f.href for f in self.files]
        if len(set(hrefs)) != len(hrefs):
            raise BuildError(f"{self.system_id}: duplicate file references {hrefs}")

        disk_ids = [d.id for d in self.disks]
        if len(set(disk_ids)) != len(disk_ids):
            raise BuildError(f"{self.system_id}: duplicate disk ids {disk_ids}")
        file_refs = sorted(d.file.id for d in self.disks)
        if file_refs != sorted(file_ids):
            raise BuildError(f"{self.system_id}: disks reference files {file_refs}, but files are {file_ids}")

        instance_ids = [item.instance_id for item in self.rasd_items]
        if instance_ids != list(range(1, len(instance_ids) + 1)):
            raise BuildError(f"{self.system_id}: hardware instance ids {instance_ids} are not 1..{len(instance_ids)}")

        controllers = [item for item in self.rasd_items if isinstance(item, RasdIdeController)]
        if len(controllers) != 1:
            raise BuildError(f"{self.system_id}: expected one IDE controller, found {len(controllers)}")

        hard_disks = [item for item in self.rasd_items if isinstance(item, RasdHardDisk)]
        if [hd.disk.id for hd in hard_disks] != disk_ids:
            raise BuildError(f"{self.system_id}: hard disk items do not match the disk section")
        for position, hd in enumerate(hard_disks):
            if hd.rasd_parent is not controllers[0] or hd.address_on_parent != position:
                raise BuildError(f"{self.system_id}: hard disk item {hd.instance_id} is not attached at "
                                 f"{controllers[0].instance_id}:{position}")

        network_names = [nw.name for nw in self.networks]
        if len(set(network_names)) != len(network_names):
            raise BuildError(f"{self.system_id}: duplicate network names {network_names}")
        for item in self.rasd_items:
            if isinstance(item, RasdEthernet) and item.network.name not in network_names:
                raise BuildError(f"{self.system_id}: adapter {item.instance_id} connects to unknown network '{item.network.name}'")


    def to_xml(self):
        envelope = ET.Element('{%s}Envelope' % NS_OVF, nsmap=NS_MAP)

        # References (files)
        references = ET.Element('{%s}References' % NS_OVF)
        for file in self.files:
            references.append(file.xml_item())
        envelope.append(references)

        # DiskSection
        disk_section = ET.Element('{%s}DiskSection' % NS_OVF)
        disk_section.append(ovf_text_element('Info', "List of the virtual disks"))
        for disk in self.disks:
            disk_section.append(disk.xml_item())
        envelope.append(disk_section)

        # NetworkSection
        network_section = ET.Element('{%s}NetworkSection' % NS_OVF)
        network_section.append(ovf_text_element('Info', "The list of logical networks"))
        for nw in self.networks:
            network_section.append(nw.xml_item())
        envelope.append(network_section)

        # VirtualSystem
        virtual_system = ET.Element('{%s}VirtualSystem' % NS_OVF, { '{%s}id' % NS_OVF: self.system_id })
        virtual_system.append(ovf_text_element('Info', "A virtual machine"))
        virtual_system.append(ovf_text_element('Name', self.name))
        virtual_system.append(self.operating_system.xml_item())
        envelope.append(virtual_system)

        hw = ET.Element('{%s}VirtualHardwareSection' % NS_OVF)
        hw.append(ovf_text_element('Info', "Virtual hardware requirements"))
        hw.append(self.vssd_system.xml_item("Virtual Hardware Family"))
        for rasd_item in self.rasd_items:
            xml_item = rasd_item.xml_item()
            # sort rasd elements by tag:
            xml_item[:] = sorted(xml_item, key=lambda child: child.tag)
            hw.append(xml_item)
        virtual_system.append(hw)

        return ET.ElementTree(envelope)


    def to_string(self):
        self.check()
        try:
            body = ET.tostring(self.to_xml(), pretty_print=True, encoding="unicode")
        except (ET.LxmlError, TypeError, ValueError) as e:
            raise BuildError(f"{self.system_id}: cannot serialize OVF: {e}") from e
        return f"{XML_DECLARATION}\n{body}"


    def write_xml(self, ovf_file):
        data = self.to_string()
        with open(ovf_file, "wt", encoding="UTF-8") as f:
            f.write(data)


def format_ovf(export_task_id, instance, instance_type, image, **kwargs):
    return OVF.from_ec2(export_task_id, instance, instance_type, image, **kwargs).to_string()
