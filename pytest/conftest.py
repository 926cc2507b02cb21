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
import yaml
import xmltodict

from ec2ovf.ec2 import ExportTask, Image, Instance, InstanceTypeInfo
from ec2ovf.errors import NotFoundError, TransportError
from ec2ovf.ovf import OVF


THIS_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_DIR = os.path.join(THIS_DIR, "configs")

FORCE_LIST = ('File', 'Disk', 'Network', 'Item')


def load_config(in_yaml):
    with open(in_yaml) as f:
        return yaml.safe_load(f)


def load_metadata(config):
    return (config['task_id'],
            Instance.from_dict(config['instance']),
            InstanceTypeInfo.from_dict(config['instance_type']),
            Image.from_dict(config['image']))


def parse_ovf(data):
    return xmltodict.parse(data, force_list=FORCE_LIST)


def hw_items(ovf):
    return ovf['Envelope']['VirtualSystem']['VirtualHardwareSection']['Item']


def section_list(section, key):
    if section is None:
        return []
    return section.get(key, [])


@pytest.fixture
def get_configs(request):
    in_yaml = request.param
    config = load_config(in_yaml)
    ovf = OVF.from_ec2(*load_metadata(config))

    yield config, ovf, parse_ovf(ovf.to_string())


class FakeAwsClient(object):
    """Serves EC2 metadata from a test config instead of the AWS API."""

    def __init__(self, config, fail_upload=False):
        self.config = config
        self.fail_upload = fail_upload
        self.uploads = []


    def get_export_image_task(self, task_id):
        if task_id != self.config['task_id']:
            raise NotFoundError(f"no export image task found with ID {task_id}")
        return ExportTask.from_dict(self.config['export_task'])


    def get_image(self, image_id):
        return Image.from_dict(self.config['image'])


    def get_instance(self, instance_id):
        return Instance.from_dict(self.config['instance'])


    def get_instance_type(self, type_name):
        return InstanceTypeInfo.from_dict(self.config['instance_type'])


    def upload_object(self, bucket, key, data):
        if self.fail_upload:
            raise TransportError(f"failed to upload s3://{bucket}/{key}: Access Denied")
        self.uploads.append((bucket, key, data))


@pytest.fixture
def fake_aws(monkeypatch):
    def setup(name="basic.yaml", **kwargs):
        client = FakeAwsClient(load_config(os.path.join(CONFIG_DIR, name)), **kwargs)

        def factory(region=None, profile=None):
            client.region = region
            client.profile = profile
            return client

        monkeypatch.setattr("ec2ovf.cli.AwsClient", factory)
        return client

    yield setup
