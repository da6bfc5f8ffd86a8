from typing import BinaryIO
from minio import Minio
from app.src.constants import MINIO_HOST, MINIO_PASSWORD, MINIO_PORT, MINIO_USERNAME

# MinIO client instance
client: Minio = Minio(
    endpoint=f"{MINIO_HOST}:{MINIO_PORT}",
    access_key=MINIO_USERNAME,
    secret_key=MINIO_PASSWORD,
    secure=False,
)


def createBucket(bucketName: str) -> None:
    """
    Create a new bucket in MinIO unless it already exists.

    Args:
        bucketName (str): The name of the bucket to create.
    """
    if not client.bucket_exists(bucketName):
        client.make_bucket(bucketName)


def deleteBucket(bucketName: str) -> None:
    """
    Delete a bucket and all its contents from MinIO.

    Args:
        bucketName (str): The name of the bucket to delete.

    Raises:
        S3Error: If the bucket or objects cannot be deleted.
    """
    if not client.bucket_exists(bucketName):
        return
    for object in client.list_objects(bucketName, recursive=True):
        client.remove_object(bucketName, object.object_name)
    client.remove_bucket(bucketName)


def listFiles(bucketName: str, prefix: str) -> list[str]:
    """
    List the object names starting with a prefix.

    Args:
        bucketName (str): The name of the bucket to search.
        prefix (str): Object name prefix, e.g. "invoice_12_".

    Returns:
        list[str]: Matching object names in lexical order.
    """
    objects = client.list_objects(bucketName, prefix=prefix, recursive=True)
    return sorted(object.object_name for object in objects)


def downloadFile(bucketName: str, objectID: str) -> bytes:
    """
    Download a file from MinIO.

    Raises:
        S3Error: If the file cannot be retrieved.
    """
    response = client.get_object(bucketName, objectID)
    try:
        return response.read()
    finally:
        response.close()
        response.release_conn()


def deleteFile(bucketName: str, objectID: str) -> None:
    """
    Delete a file from MinIO.

    Raises:
        S3Error: If the file cannot be deleted.
    """
    client.remove_object(bucketName, objectID)


def uploadFile(
    bucketName: str,
    objectID: str,
    size: int,
    fileObject: BinaryIO,
    contentType: str = "application/octet-stream",
) -> None:
    """
    Upload a file to MinIO.

    Args:
        bucketName (str): The name of the bucket where the file will be stored.
        objectID (str): The unique identifier (key) for the object in MinIO.
        size (int): The size of the file in bytes.
        fileObject (BinaryIO): A file-like object containing the data to upload.
        contentType (str): MIME type stored with the object.

    Raises:
        S3Error: If the file cannot be uploaded.
    """
    client.put_object(bucketName, objectID, fileObject, size, content_type=contentType)
