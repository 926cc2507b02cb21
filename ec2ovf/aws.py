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

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ec2ovf.ec2 import ExportTask, Image, Instance, InstanceTypeInfo
from ec2ovf.errors import FetchError, NotFoundError, TransportError


def _fetch_error(what, identifier, e):
    if isinstance(e, ClientError):
        code = e.response.get('Error', {}).get('Code', "")
        if "NotFound" in code or "Malformed" in code:
            return NotFoundError(f"no {what} found with ID {identifier} ({code})")
    return FetchError(f"failed to describe {what} {identifier}: {e}")


class AwsClient(object):

    def __init__(self, region=None, profile=None, ec2_client=None, s3_client=None):
        if ec2_client is None or s3_client is None:
            session = boto3.session.Session(profile_name=profile, region_name=region)
            ec2_client = ec2_client or session.client("ec2")
            s3_client = s3_client or session.client("s3")
        self.ec2 = ec2_client
        self.s3 = s3_client


    def get_export_image_task(self, task_id):
        try:
            result = self.ec2.describe_export_image_tasks(ExportImageTaskIds=[task_id])
        except (ClientError, BotoCoreError) as e:
            raise _fetch_error("export image task", task_id, e) from e

        tasks = result.get('ExportImageTasks', [])
        if not tasks:
            raise NotFoundError(f"no export image task found with ID {task_id}")
        return ExportTask.from_dict(tasks[0])


    def get_image(self, image_id):
        try:
            result = self.ec2.describe_images(ImageIds=[image_id])
        except (ClientError, BotoCoreError) as e:
            raise _fetch_error("image", image_id, e) from e

        images = result.get('Images', [])
        if not images:
            raise NotFoundError(f"no image found with ID {image_id}")
        return Image.from_dict(images[0])


    def get_instance(self, instance_id):
        try:
            result = self.ec2.describe_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as e:
            raise _fetch_error("instance", instance_id, e) from e

        reservations = result.get('Reservations', [])
        if not reservations or not reservations[0].get('Instances'):
            raise NotFoundError(f"no instance found with ID {instance_id}")
        return Instance.from_dict(reservations[0]['Instances'][0])


    def get_instance_type(self, type_name):
        try:
            result = self.ec2.describe_instance_types(InstanceTypes=[type_name])
        except (ClientError, BotoCoreError) as e:
            raise _fetch_error("instance type", type_name, e) from e

        types = result.get('InstanceTypes', [])
        if not types:
            raise NotFoundError(f"no instance type found with name {type_name}")
        return InstanceTypeInfo.from_dict(types[0])


    def upload_object(self, bucket, key, data):
        if isinstance(data, str):
            data = data.encode("UTF-8")
        try:
            self.s3.put_object(Bucket=bucket, Key=key, Body=data)
        except (ClientError, BotoCoreError) as e:
            raise TransportError(f"failed to upload s3://{bucket}/{key}: {e}") from e
