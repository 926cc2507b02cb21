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

from ec2ovf.errors import ValidationError


def _require(d, key, what):
    try:
        return d[key]
    except (KeyError, TypeError):
        raise ValidationError(f"{what}: missing field '{key}'")


class Tag(object):

    def __init__(self, key, value):
        self.key = key
        self.value = value


    @classmethod
    def from_dict(cls, d):
        return cls(d.get('Key'), d.get('Value'))


class NetworkInterface(object):

    def __init__(self, subnet_id=None):
        self.subnet_id = subnet_id


    @classmethod
    def from_dict(cls, d):
        return cls(d.get('SubnetId'))


class Instance(object):

    def __init__(self, instance_id, core_count,
                 instance_type=None, network_interfaces=None, tags=None):
        self.instance_id = instance_id
        self.core_count = int(core_count)
        self.instance_type = instance_type
        self.network_interfaces = list(network_interfaces or [])
        self.tags = list(tags or [])


    @classmethod
    def from_dict(cls, d):
        instance_id = _require(d, 'InstanceId', "instance")
        cpu_options = _require(d, 'CpuOptions', f"instance {instance_id}")
        core_count = _require(cpu_options, 'CoreCount', f"instance {instance_id} CpuOptions")

        return cls(instance_id, core_count,
                   instance_type=d.get('InstanceType'),
                   network_interfaces=[NetworkInterface.from_dict(ni) for ni in d.get('NetworkInterfaces', [])],
                   tags=[Tag.from_dict(t) for t in d.get('Tags', [])])


    def name(self):
        """Value of the first 'Name' tag, in tag order, or the instance id."""
        for tag in self.tags:
            if tag.key == "Name":
                return tag.value
        return self.instance_id


class InstanceTypeInfo(object):

    def __init__(self, memory_mib, instance_type=None):
        self.memory_mib = int(memory_mib)
        self.instance_type = instance_type


    @classmethod
    def from_dict(cls, d):
        instance_type = d.get('InstanceType')
        memory_info = _require(d, 'MemoryInfo', f"instance type {instance_type}")
        return cls(_require(memory_info, 'SizeInMiB', f"instance type {instance_type} MemoryInfo"),
                   instance_type=instance_type)


class BlockDeviceMapping(object):

    def __init__(self, device_name, volume_size_gib=None, ebs=False):
        self.device_name = device_name
        self.volume_size_gib = volume_size_gib
        self.ebs = ebs or volume_size_gib is not None


    @classmethod
    def from_dict(cls, d):
        device_name = _require(d, 'DeviceName', "block device mapping")
        if 'Ebs' not in d:
            return cls(device_name)
        size = _require(d['Ebs'], 'VolumeSize', f"block device mapping {device_name} Ebs")
        return cls(device_name, int(size), ebs=True)


    def is_ebs(self):
        return self.ebs


    def device_basename(self):
        return os.path.basename(self.device_name.rstrip("/"))


class Image(object):

    def __init__(self, image_id=None, platform_details=None, description=None,
                 block_device_mappings=None, source_instance_id=None):
        self.image_id = image_id
        self.platform_details = platform_details
        self.description = description or ""
        self.block_device_mappings = list(block_device_mappings or [])
        self.source_instance_id = source_instance_id


    @classmethod
    def from_dict(cls, d):
        return cls(image_id=d.get('ImageId'),
                   platform_details=d.get('PlatformDetails'),
                   description=d.get('Description'),
                   block_device_mappings=[BlockDeviceMapping.from_dict(bdm) for bdm in d.get('BlockDeviceMappings', [])],
                   source_instance_id=d.get('SourceInstanceId'))


class ExportTask(object):

    def __init__(self, task_id, image_id, s3_bucket, s3_prefix=""):
        self.task_id = task_id
        self.image_id = image_id
        self.s3_bucket = s3_bucket
        self.s3_prefix = s3_prefix or ""


    @classmethod
    def from_dict(cls, d):
        task_id = _require(d, 'ExportImageTaskId', "export image task")
        what = f"export image task {task_id}"
        location = _require(d, 'S3ExportLocation', what)
        return cls(task_id,
                   _require(d, 'ImageId', what),
                   _require(location, 'S3Bucket', f"{what} S3ExportLocation"),
                   location.get('S3Prefix', ""))


    def ovf_key(self, name="vm.ovf"):
        return f"{self.s3_prefix}{name}"
