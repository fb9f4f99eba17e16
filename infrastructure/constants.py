# Stack kinds
SERVICE_STACK = "ServiceStack"
VPC_STACK = "VpcStack"
DEVICE_FARM_STACK = "DeviceFarmStack"
DEPLOYMENT_BUCKET_STACK = "DeploymentBucketStack"
WEBSITE_BUCKET_STACK = "BucketStack"
DOMAIN_STACK_SUFFIX = "Stack"
CONTACT_FORM_STACK = "ContactFormStack"

# Stack name prefixes per pipeline
FRONT_END = "FrontEnd"
BACK_END = "BackEnd"
WEBSITE = "Website"

# Pipeline stacks
BACKEND_PIPELINE_STACK_NAME = "PipelineDeploymentStack"
FRONTEND_PIPELINE_STACK_NAME = "FrontEndPipelineDeploymentStack"
WEBSITE_PIPELINE_STACK_NAME = "WebsitePipelineStack"
TEMPLATE_ENDING = ".template.json"

# Source control
GITHUB_OWNER = "GardenInc"
CDK_REPO = "GIDatingServiceCDK"
FRONTEND_REPO = "GIDatingFrontend"
WEBSITE_REPO = "GIDatingWebsite"
SOURCE_BRANCH = "main"
SECRET_NAME = "github-token-plaintext"

# Cross-account roles created by cfn_roles/ in every target account
CODE_PIPELINE_CROSS_ACCOUNT_ROLE = "CodePipelineCrossAccountRole"
CLOUDFORMATION_DEPLOYMENT_ROLE = "CloudFormationDeploymentRole"

# Website
DOMAIN_NAME = "qandmedating.com"
BETA_CERTIFICATE_ARN = (
    "arn:aws:acm:us-east-1:000000000000:certificate/00000000-0000-0000-0000-000000000000"
)
PROD_CERTIFICATE_ARN = ""
DEPLOY_PROD_DISTRIBUTION = False
BETA_NAME_SERVERS = [
    "ns-381.awsdns-47.com",
    "ns-525.awsdns-01.net",
    "ns-1366.awsdns-42.org",
    "ns-1717.awsdns-22.co.uk",
]

# Contact form
CONTACT_FORM_MAX_ITEMS = 10000

# Artifact key outputs read back by the bootstrap
BACKEND_KEY_OUTPUT = "ArtifactBucketEncryptionKeyArn"
FRONTEND_KEY_OUTPUT = "FrontEndArtifactBucketEncryptionKeyArn"
WEBSITE_KEY_OUTPUT = "WebsiteArtifactBucketEncryptionKeyArn"

# Beta site is gated behind basic auth at the CDN edge
BETA_BASIC_AUTH_USER = "testUser"
BETA_BASIC_AUTH_PASSWORD = "qandmedating"

# Email for the apex domain
MAIL_EXCHANGES = [("mx1.improvmx.com", 10), ("mx2.improvmx.com", 20)]
SPF_RECORD = "v=spf1 include:spf.improvmx.com -all"

# Artifact buckets are named {prefix}artifact-bucket-{pipeline account}
BACKEND_ARTIFACT_BUCKET_PREFIX = ""
FRONTEND_ARTIFACT_BUCKET_PREFIX = "frontend-"
WEBSITE_ARTIFACT_BUCKET_PREFIX = "website-"
